"""Reader for Bulletin Hydra style event input files.

The first line holds the starting hypocenter and the analyst commands::

    origin lat lon depth held_loc held_depth analyst_depth bayes_depth bayes_se rstt no_svd

Every following line is one pick::

    db_id sta chan net loc lat lon elev quality [phase] arrival use author [obs_phase] [affinity]

Logical flags are the Fortran style ``T``/``F``. Picks for one station are
expected to be adjacent; the order of the file is kept.
"""

import logging
import re
from pathlib import Path
from typing import Iterable

from .errors import InputError
from .event import Event
from .models import AuthorType, DepthSource, Hypocenter, Station
from .picks import Pick

logger = logging.getLogger(__name__)

_FLOAT_RE = re.compile(r"^[-+]?\d*\.\d*$")


def _flag(token: str) -> bool:
    return token[:1].upper() == "T"


def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def _parse_hypocenter(tokens: list[str]) -> Hypocenter:
    if len(tokens) < 11:
        raise InputError(f"hypocenter line needs 11 fields, got {len(tokens)}")
    try:
        origin, lat, lon, depth = (float(t) for t in tokens[:4])
        bayes_depth, bayes_se = float(tokens[7]), float(tokens[8])
    except ValueError as exc:
        raise InputError(f"bad hypocenter line: {exc}") from exc

    analyst_depth = _flag(tokens[6])
    if analyst_depth:
        depth = bayes_depth
    hypo = Hypocenter(
        origin_time=origin,
        latitude=lat,
        longitude=lon,
        depth=depth,
        held_location=_flag(tokens[4]),
        held_depth=_flag(tokens[5]),
        restricted=_flag(tokens[9]),
        no_svd=_flag(tokens[10]),
    )
    if analyst_depth:
        if bayes_se <= 0:
            raise InputError(f"analyst depth needs a positive standard error, got {bayes_se}")
        hypo.add_bayes(bayes_depth, bayes_se, DepthSource.ANALYST)
    return hypo


def _parse_pick(tokens: list[str], line_no: int) -> Pick:
    if len(tokens) < 12:
        raise InputError(f"line {line_no}: pick needs at least 12 fields, got {len(tokens)}")
    db_id, sta, chan, net, loc = tokens[:5]
    try:
        lat, lon, elev_km, quality = (float(t) for t in tokens[5:9])
        rest = tokens[9:]
        phase = ""
        if not _is_number(rest[0]):
            phase = rest.pop(0)
        arrival = float(rest[0])
        use = _flag(rest[1])
        author = AuthorType.from_code(int(rest[2]))
    except (ValueError, IndexError) as exc:
        raise InputError(f"line {line_no}: bad pick: {exc}") from exc

    extra = rest[3:]
    obs_phase = ""
    affinity = 0.0
    if len(extra) == 1:
        if _FLOAT_RE.match(extra[0]):
            affinity = float(extra[0])
        else:
            obs_phase = extra[0]
    elif len(extra) >= 2:
        obs_phase = extra[0]
        if _FLOAT_RE.match(extra[1]):
            affinity = float(extra[1])

    # "--" is the conventional placeholder for a blank location code.
    if loc == "--":
        loc = ""
    station = Station(net=net, sta=sta, loc=loc, lat=lat, lon=lon, elev_m=elev_km * 1000.0)
    return Pick(
        id=db_id,
        station=station,
        chan=chan,
        arrival_time=arrival,
        ph_code=phase,
        obs_code=obs_phase or phase,
        quality=quality,
        author=author,
        obs_affinity=affinity,
        use=use,
    )


def parse_hydra(lines: Iterable[str], event_id: str = "") -> Event:
    hypo = None
    event = None
    for line_no, line in enumerate(lines, start=1):
        tokens = line.split()
        if not tokens:
            continue
        if hypo is None:
            hypo = _parse_hypocenter(tokens)
            event = Event(hypo, event_id=event_id)
            continue
        event.add_pick(_parse_pick(tokens, line_no))

    if event is None:
        raise InputError("empty Hydra input")
    logger.info(
        "Read Hydra input: event_id=%s stations=%d picks=%d",
        event_id,
        len(event.stations),
        len(event.picks),
    )
    return event


def read_hydra(path: str | Path) -> Event:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            return parse_hydra(handle, event_id=path.stem)
    except OSError as exc:
        raise InputError(f"unable to read {path}: {exc}") from exc
