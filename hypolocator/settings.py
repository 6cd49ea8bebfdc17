from __future__ import annotations

import argparse
from dataclasses import dataclass

from .solver import LocatorSettings
from .traveltime import TwoLayerTravelTimes


@dataclass
class Settings:
    poll_seconds: float = 5.0
    batch_size: int = 50
    input_file: str | None = None
    model_path: str | None = None
    depth_resolution: str = "zone"
    use_bayesian_depth: bool = True
    max_iterations: int = 20
    rss_tolerance: float = 1e-4
    position_tolerance_deg: float = 1e-3
    depth_tolerance_km: float = 0.1
    max_position_step_deg: float = 1.0
    max_depth_step_km: float = 25.0
    damping: float = 1e-5
    svd_cutoff: float = 1e-4
    max_step_halvings: int = 4
    timeout_seconds: float | None = None
    vp_crust_km_s: float = 6.0
    vp_mantle_km_s: float = 8.0
    vp_vs: float = 1.73
    moho_km: float = 35.0
    log_level: str = "INFO"
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_user: str = "seis"
    pg_password: str = "seis"
    pg_dbname: str = "seismic"

    def locator_settings(self) -> LocatorSettings:
        return LocatorSettings(
            max_iterations=self.max_iterations,
            rss_tolerance=self.rss_tolerance,
            position_tolerance_deg=self.position_tolerance_deg,
            depth_tolerance_km=self.depth_tolerance_km,
            max_position_step_deg=self.max_position_step_deg,
            max_depth_step_km=self.max_depth_step_km,
            damping=self.damping,
            svd_cutoff=self.svd_cutoff,
            max_step_halvings=self.max_step_halvings,
            use_bayesian_depth=self.use_bayesian_depth,
            timeout_seconds=self.timeout_seconds,
        )

    def travel_time_table(self) -> TwoLayerTravelTimes:
        return TwoLayerTravelTimes(
            vp_crust=self.vp_crust_km_s,
            vp_mantle=self.vp_mantle_km_s,
            vp_vs=self.vp_vs,
            moho_km=self.moho_km,
        )


def parse_args(argv: list[str] | None = None) -> Settings:
    parser = argparse.ArgumentParser(description="Hypocenter relocator")
    parser.add_argument("--poll-seconds", type=float, default=5.0)
    parser.add_argument("--batch-size", type=int, default=50,
                        help="Maximum preliminary origins relocated per cycle")
    parser.add_argument("--input-file", default=None,
                        help="Locate a single Hydra style event file instead of polling PostgreSQL")
    parser.add_argument("--model-path", default=None,
                        help="Directory (or .npz file) holding the depth statistics grid")
    parser.add_argument("--depth-resolution", default="zone", choices=["zone", "1spd", "2spd"])
    parser.add_argument("--no-bayesian-depth", action="store_true",
                        help="Do not constrain depth with the gridded depth statistics")
    parser.add_argument("--max-iterations", type=int, default=20)
    parser.add_argument("--rss-tolerance", type=float, default=1e-4)
    parser.add_argument("--position-tolerance-deg", type=float, default=1e-3)
    parser.add_argument("--depth-tolerance-km", type=float, default=0.1)
    parser.add_argument("--max-position-step-deg", type=float, default=1.0)
    parser.add_argument("--max-depth-step-km", type=float, default=25.0)
    parser.add_argument("--damping", type=float, default=1e-5)
    parser.add_argument("--svd-cutoff", type=float, default=1e-4)
    parser.add_argument("--max-step-halvings", type=int, default=4,
                        help="Times a step is halved when the misfit grows before it counts as divergence")
    parser.add_argument("--timeout-seconds", type=float, default=None)
    parser.add_argument("--vp-crust-km-s", type=float, default=6.0)
    parser.add_argument("--vp-mantle-km-s", type=float, default=8.0)
    parser.add_argument("--vp-vs", type=float, default=1.73)
    parser.add_argument("--moho-km", type=float, default=35.0)
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--pg-host", default="localhost")
    parser.add_argument("--pg-port", type=int, default=5432)
    parser.add_argument("--pg-user", default="seis")
    parser.add_argument("--pg-password", default="seis")
    parser.add_argument("--pg-db", default="seismic")
    args = parser.parse_args(argv)

    return Settings(
        poll_seconds=args.poll_seconds,
        batch_size=args.batch_size,
        input_file=args.input_file,
        model_path=args.model_path,
        depth_resolution=args.depth_resolution,
        use_bayesian_depth=not args.no_bayesian_depth,
        max_iterations=args.max_iterations,
        rss_tolerance=args.rss_tolerance,
        position_tolerance_deg=args.position_tolerance_deg,
        depth_tolerance_km=args.depth_tolerance_km,
        max_position_step_deg=args.max_position_step_deg,
        max_depth_step_km=args.max_depth_step_km,
        damping=args.damping,
        svd_cutoff=args.svd_cutoff,
        max_step_halvings=args.max_step_halvings,
        timeout_seconds=args.timeout_seconds,
        vp_crust_km_s=args.vp_crust_km_s,
        vp_mantle_km_s=args.vp_mantle_km_s,
        vp_vs=args.vp_vs,
        moho_km=args.moho_km,
        log_level=args.log_level.upper(),
        pg_host=args.pg_host,
        pg_port=args.pg_port,
        pg_user=args.pg_user,
        pg_password=args.pg_password,
        pg_dbname=args.pg_db,
    )
