import logging
from dataclasses import dataclass

from .models import Hypocenter, Station
from .picks import Pick, PickGroup
from .traveltime import TravelTimeTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StationStats:
    n_stations: int
    stations_used: int
    n_picks: int
    picks_used: int


class Event:
    """One hypocenter, its stations and its pick groups.

    Groups are kept in input order. Consecutive picks from the same station
    share a group, so callers that want one group per station must present
    each station's picks together.
    """

    def __init__(self, hypo: Hypocenter, event_id: str = "") -> None:
        self.event_id = event_id
        self.hypo = hypo
        self.stations: dict[tuple[str, str, str], Station] = {}
        self.groups: list[PickGroup] = []

    def add_pick(self, pick: Pick) -> None:
        key = pick.station_key
        if self.groups and self.groups[-1].station.station_key == key:
            self.groups[-1].add(pick)
            return
        if key in self.stations:
            # Out of order station: fold into the existing group.
            logger.warning(
                "Picks for station %s.%s.%s are not contiguous; appending pick_id=%s to its group",
                *key,
                pick.id,
            )
            self.group_for(key).add(pick)
            return
        self.stations[key] = pick.station
        self.groups.append(PickGroup(pick.station, pick))

    def group_for(self, key: tuple[str, str, str]) -> PickGroup:
        for group in self.groups:
            if group.station.station_key == key:
                return group
        raise KeyError(key)

    @property
    def picks(self) -> list[Pick]:
        return [pick for group in self.groups for pick in group.picks]

    def update_picks(self, table: TravelTimeTable) -> None:
        for group in self.groups:
            group.update(self.hypo, table)

    def update_hypocenter(
        self,
        origin_time: float,
        latitude: float,
        longitude: float,
        depth: float,
        table: TravelTimeTable,
    ) -> None:
        self.hypo.update(origin_time, latitude, longitude, depth)
        self.update_picks(table)

    def station_stats(self) -> StationStats:
        n_picks = 0
        picks_used = 0
        stations_used = 0
        for group in self.groups:
            n_picks += len(group.picks)
            used = group.used_count()
            picks_used += used
            if used > 0:
                stations_used += 1
        return StationStats(
            n_stations=len(self.stations),
            stations_used=stations_used,
            n_picks=n_picks,
            picks_used=picks_used,
        )
