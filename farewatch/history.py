from __future__ import annotations

import logging
import sqlite3
import tempfile
from typing import Optional, Union

import pandas as pd

from .db import DB_FILE

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = [
    "checked_at",
    "departure_airport",
    "destination_airport",
    "min_price",
    "offers",
]
DAILY_COLUMNS = ["day", "min_price", "rolling_mean"]


def _load(tracker_id: str, db_path: str) -> pd.DataFrame:
    conn = sqlite3.connect(db_path)
    try:
        df = pd.read_sql_query(
            """
            SELECT checked_at, departure_airport, destination_airport,
                   CAST(price_eur AS REAL) AS price_eur
              FROM observations
             WHERE tracker_id=?
            """,
            conn,
            params=(tracker_id,),
        )
    finally:
        conn.close()
    if not df.empty:
        df["checked_at"] = pd.to_datetime(
            df["checked_at"], utc=True, format="ISO8601"
        )
    return df


def price_history(tracker_id: str, db_path: str = DB_FILE) -> pd.DataFrame:
    """Cheapest price and offer count per check and route, oldest first."""
    df = _load(tracker_id, db_path)
    if df.empty:
        return pd.DataFrame(columns=HISTORY_COLUMNS)

    result = (
        df.groupby(
            ["checked_at", "departure_airport", "destination_airport"],
            as_index=False,
        )
        .agg(min_price=("price_eur", "min"), offers=("price_eur", "size"))
        .sort_values(["checked_at", "min_price"])
        .reset_index(drop=True)
    )
    return result[HISTORY_COLUMNS]


def daily_minimums(
    tracker_id: str,
    db_path: str = DB_FILE,
    *,
    window: int = 7,
    output: Optional[str] = None,
) -> Union[pd.DataFrame, str]:
    """Cheapest price per day with a rolling mean over *window* days.

    ``output="csv"`` writes the frame to a temporary CSV and returns its path.
    """
    df = _load(tracker_id, db_path)
    if df.empty:
        result = pd.DataFrame(columns=DAILY_COLUMNS)
    else:
        df["day"] = df["checked_at"].dt.tz_convert(None).dt.normalize()
        result = (
            df.groupby("day", as_index=False)["price_eur"]
            .min()
            .rename(columns={"price_eur": "min_price"})
            .sort_values("day")
            .reset_index(drop=True)
        )
        result["rolling_mean"] = (
            result["min_price"].rolling(window=window, min_periods=1).mean()
        )
    logger.info("Tracker %s: %d days of price history", tracker_id, len(result))

    if output == "csv":
        tmp = tempfile.NamedTemporaryFile(delete=False, suffix=".csv")
        tmp.close()
        result.to_csv(tmp.name, index=False)
        return tmp.name
    return result


__all__ = ["price_history", "daily_minimums"]
