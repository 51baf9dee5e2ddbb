"""Configuration settings for Trailtrack."""

CONFIG = {
    # Position filter
    "max_fix_accuracy": 100,  # meters - fixes less accurate than this are dropped
    "min_movement_km": 0.003,  # km - ignore GPS jitter below 3 m
    "earth_radius_km": 6371,  # mean Earth radius
    # Position source subscription
    "high_accuracy": True,
    "max_fix_age_ms": 0,  # never accept cached fixes
    "fix_timeout_ms": 15000,  # ms
    # Crash-safe backup
    "backup_interval_ms": 30000,  # ms between snapshots while tracking
    "backup_max_age_ms": 24 * 60 * 60 * 1000,  # snapshots older than this are discarded
    "backup_key": "route_backup",
    "sessions_key": "sessions",
    # Durable store
    "storage_quota_bytes": 5 * 1024 * 1024,  # typical browser localStorage limit
    "storage_warning_pct": 80,  # percent of quota considered "nearly full"
    "db_path": "trailtrack.db",
    # Save-or-discard protocol
    "max_save_rounds": 3,  # prompt rounds before the route is parked in the backup slot
    # Concrete sources
    "gps_poll_interval": 3,  # seconds between termux-location polls
    "playback_min_interval": 0.1,  # seconds
    "playback_max_interval": 5.0,  # seconds
    "ws_host": "localhost",
    "ws_port": 8765,
    # App loop
    "log_interval": 10,  # seconds between STATE log entries
    "loop_interval": 0.2,  # seconds between run-loop checks
}
