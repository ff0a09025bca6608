# Shared helpers: logging setup and configuration validation
