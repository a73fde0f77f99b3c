# Core module exports
from core.config import settings, get_settings
from core.clock import Clock, SystemClock, FixedClock, as_utc
from core.database import engine, Base, AsyncSessionLocal, get_db, GUID, UTCDateTime, init_models
from core.logging import (
    configure_logging,
    get_logger,
    bind_context,
    clear_context,
    generate_correlation_id,
    api_logger,
    engine_logger,
    db_logger,
    srs_logger,
)
