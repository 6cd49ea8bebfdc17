import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .geometry import delta_to_km
from .models import AuthorType, LocationResult, LocStatus, Station
from .picks import Pick
from .settings import Settings

logger = logging.getLogger(__name__)

# Terminal locator status for origins whose picks cannot be located.
INPUT_ERROR_STATUS = "input_error"


@dataclass(frozen=True)
class PendingOrigin:
    id: int
    origin_ts: datetime
    lat: float
    lon: float
    depth_km: float
    association_key: str


def connect(settings: Settings):
    import psycopg2

    conn = psycopg2.connect(
        host=settings.pg_host,
        port=settings.pg_port,
        user=settings.pg_user,
        password=settings.pg_password,
        dbname=settings.pg_dbname,
    )
    conn.autocommit = True
    return conn


def fetch_stations(conn) -> dict[tuple[str, str, str], Station]:
    with conn.cursor() as cur:
        cur.execute("SELECT net, sta, loc, lat, lon, elev_m FROM stations")
        rows = cur.fetchall()

    out: dict[tuple[str, str, str], Station] = {}
    for net, sta, loc, lat, lon, elev_m in rows:
        station = Station(net=net, sta=sta, loc=loc, lat=lat, lon=lon, elev_m=elev_m or 0.0)
        out[station.station_key] = station
    return out


def fetch_pending_origins(conn, limit: int) -> list[PendingOrigin]:
    query = """
        SELECT o.id, o.origin_ts, o.lat, o.lon, o.depth_km, o.association_key
        FROM origins o
        WHERE o.status = 'preliminary'
          AND o.locator_status IS NULL
        ORDER BY o.origin_ts ASC
        LIMIT %s
    """
    with conn.cursor() as cur:
        cur.execute(query, (limit,))
        rows = cur.fetchall()

    return [
        PendingOrigin(
            id=int(row[0]),
            origin_ts=row[1],
            lat=float(row[2]),
            lon=float(row[3]),
            depth_km=float(row[4]),
            association_key=row[5],
        )
        for row in rows
    ]


def fetch_origin_picks(
    conn,
    origin_id: int,
    stations: dict[tuple[str, str, str], Station],
) -> list[Pick]:
    """Picks associated with an origin, grouped by station in time order."""
    query = """
        SELECT p.id, p.ts, p.phase, p.net, p.sta, p.loc, p.chan, p.score
        FROM origin_arrivals a
        JOIN phase_picks p ON p.id = a.phase_pick_id
        WHERE a.origin_id = %s
        ORDER BY p.net, p.sta, p.loc, p.ts ASC
    """
    with conn.cursor() as cur:
        cur.execute(query, (origin_id,))
        rows = cur.fetchall()

    picks: list[Pick] = []
    for pick_id, ts, phase, net, sta, loc, chan, score in rows:
        station = stations.get((net, sta, loc))
        if station is None:
            logger.warning(
                "Skipping pick with missing station metadata: pick_id=%s station=%s.%s.%s",
                pick_id,
                net,
                sta,
                loc,
            )
            continue
        picks.append(
            Pick(
                id=str(pick_id),
                station=station,
                chan=chan,
                arrival_time=ts.timestamp(),
                ph_code=phase,
                quality=score if score is not None else 0.0,
                author=AuthorType.LOCAL_AUTO,
            )
        )
    return picks


def update_origin(conn, origin_id: int, result: LocationResult) -> bool:
    query = """
        UPDATE origins
        SET origin_ts = %s,
            lat = %s,
            lon = %s,
            depth_km = %s,
            rms_seconds = %s,
            gap_deg = %s,
            n_picks = %s,
            n_stations = %s,
            locator_status = %s,
            status = CASE WHEN %s THEN 'final' ELSE status END,
            updated_at = now()
        WHERE id = %s
        RETURNING id
    """
    params = (
        datetime.fromtimestamp(result.origin_time, tz=timezone.utc),
        result.lat,
        result.lon,
        result.depth_km,
        result.rms_seconds,
        result.azimuthal_gap_deg,
        result.picks_used,
        result.stations_used,
        result.status.value,
        result.status is LocStatus.CONVERGED,
        origin_id,
    )
    with conn.cursor() as cur:
        cur.execute(query, params)
        row = cur.fetchone()
    return row is not None


def mark_origin(conn, origin_id: int, locator_status: str) -> bool:
    """Set a terminal locator status without touching the hypocenter."""
    query = """
        UPDATE origins
        SET locator_status = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING id
    """
    with conn.cursor() as cur:
        cur.execute(query, (locator_status, origin_id))
        row = cur.fetchone()
    return row is not None


def replace_origin_arrivals(conn, origin_id: int, result: LocationResult) -> None:
    delete_query = "DELETE FROM origin_arrivals WHERE origin_id = %s"
    insert_query = """
        INSERT INTO origin_arrivals (
            origin_id,
            phase_pick_id,
            phase,
            ts,
            net,
            sta,
            loc,
            chan,
            tt_pred_seconds,
            residual_seconds,
            distance_km,
            azimuth_deg,
            weight,
            importance,
            affinity,
            used
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    """

    with conn.cursor() as cur:
        cur.execute(delete_query, (origin_id,))
        for arr in result.arrivals:
            cur.execute(
                insert_query,
                (
                    origin_id,
                    int(arr.pick_id),
                    arr.phase,
                    datetime.fromtimestamp(arr.arrival_time, tz=timezone.utc),
                    arr.net,
                    arr.sta,
                    arr.loc,
                    arr.chan,
                    arr.arrival_time - result.origin_time - arr.residual_seconds,
                    arr.residual_seconds,
                    delta_to_km(arr.distance_deg),
                    arr.azimuth_deg,
                    arr.weight,
                    arr.importance,
                    arr.affinity,
                    arr.used,
                ),
            )
