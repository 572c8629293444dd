"""Google-backed report services."""
