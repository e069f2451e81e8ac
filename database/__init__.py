from .db import (
    DBBase,
    DBBaseClass,
    SessionLocal,
    db_engine,
    init_models,
    time_now,
    time_now_ist,
    as_utc,
    UTC,
    IST,
)
