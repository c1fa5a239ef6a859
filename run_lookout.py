import argparse
import logging
import signal

from lookout.config import configure_logging
from lookout.services.checkpoints import CheckpointNormalizer, CheckpointStore
from lookout.services.scheduler import AtRiskScheduler
from lookout.services.summarizer import SummarizerService
from lookout.services.supabase_client import get_supabase
from lookout.services.trackingmore import TrackingMoreService

logger = logging.getLogger("lookout.runner")

STEPS = ("sync", "recheck", "normalize")


def execute_pipeline(steps, workers=1, limit=None, assess=False):
    db = get_supabase()
    summarizer = SummarizerService()
    scheduler = AtRiskScheduler(
        db,
        TrackingMoreService(),
        summarizer=summarizer if assess else None,
        max_workers=workers,
    )

    # Ctrl-C finishes the shipment in flight, then stops
    signal.signal(signal.SIGINT, lambda *_: scheduler.stop())

    if "sync" in steps:
        logger.info("STEP 1: Checking new at-risk candidates (paid lookups)")
        report = scheduler.run_new_candidates(limit=limit) if limit else scheduler.run_new_candidates()
        logger.info(report.model_dump_json(indent=2))

    if "recheck" in steps and not scheduler.stop_event.is_set():
        logger.info("STEP 2: Rechecking tracked shipments")
        report = scheduler.run_recheck(limit=limit) if limit else scheduler.run_recheck()
        logger.info(report.model_dump_json(indent=2))

    if "normalize" in steps and not scheduler.stop_event.is_set():
        logger.info("STEP 3: Normalizing stored checkpoints")
        report = CheckpointNormalizer(CheckpointStore(db), summarizer).run()
        logger.info(report.model_dump_json(indent=2))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run Lookout passes outside the API process.")
    parser.add_argument("step", choices=STEPS + ("all",), help="Which pass to run")
    parser.add_argument("--workers", type=int, default=1, help="Shipments checked in parallel")
    parser.add_argument("--limit", type=int, default=None, help="Maximum shipments per pass")
    parser.add_argument("--assess", action="store_true", help="Store an AI assessment on at-risk/eligible rows")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    steps = STEPS if args.step == "all" else (args.step,)
    execute_pipeline(steps, workers=args.workers, limit=args.limit, assess=args.assess)


if __name__ == "__main__":
    main()
