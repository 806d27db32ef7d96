"""Core services: config, cron engine, channels, runtime, actions."""
