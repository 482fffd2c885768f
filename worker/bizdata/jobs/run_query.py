"""CLI job to collect business listings and export them to CSV."""

import argparse
import logging
from typing import Optional

from bizdata.core.config import ConfigError, Settings, get_settings, require_credential
from bizdata.core.controller import CollectionController
from bizdata.etl.export import default_export_filename, write_csv
from bizdata.models import CollectionConfig, CollectionSnapshot, Query, RunState
from bizdata.vendors.base import ListingSource
from bizdata.vendors.yelp_fusion import YelpFusionSource

logger = logging.getLogger(__name__)


def build_controller(
    settings: Optional[Settings] = None,
    source: Optional[ListingSource] = None,
    config: Optional[CollectionConfig] = None,
) -> CollectionController:
    """Wire a controller from environment settings; fails fast without a credential."""
    settings = settings or get_settings()
    credential = require_credential(settings)
    if config is None:
        config = CollectionConfig(
            request_delay_seconds=settings.request_delay_seconds,
            page_limit=settings.page_limit,
            max_pages=settings.max_pages,
        )
    return CollectionController(source or YelpFusionSource(), credential=credential, config=config)


class ProgressReporter:
    """Subscriber that mirrors new controller log lines into the process log."""

    def __init__(self) -> None:
        self._seen = 0
        self._run_id: Optional[str] = None

    def __call__(self, snapshot: CollectionSnapshot) -> None:
        if snapshot.run_id != self._run_id:
            self._run_id = snapshot.run_id
            self._seen = 0
        new_lines = snapshot.log_messages[self._seen:]
        self._seen = max(self._seen, len(snapshot.log_messages))
        for line in new_lines:
            logger.info("%s", line)


def run_collection_job(
    *,
    category: str,
    location: str,
    request_delay: Optional[float],
    page_limit: Optional[int],
    max_pages: Optional[int],
    dedupe: bool,
    output: Optional[str],
    controller: Optional[CollectionController] = None,
) -> CollectionSnapshot:
    settings = get_settings()
    query = Query(category=category, location=location)
    config = CollectionConfig(
        request_delay_seconds=request_delay if request_delay is not None else settings.request_delay_seconds,
        page_limit=page_limit if page_limit is not None else settings.page_limit,
        max_pages=max_pages if max_pages is not None else settings.max_pages,
        dedupe=dedupe,
    )
    controller = controller or build_controller(settings, config=config)
    if controller.config != config:
        controller.update_config(config)

    unsubscribe = controller.subscribe(ProgressReporter())
    try:
        controller.start(query)
        try:
            controller.join()
        except KeyboardInterrupt:
            logger.warning("Interrupted; stopping collection")
            controller.shutdown(timeout=15)
    finally:
        unsubscribe()

    snapshot = controller.snapshot()
    if snapshot.listings:
        write_csv(snapshot.listings, output or default_export_filename())
    else:
        logger.warning("No listings collected for query=%s; nothing exported", query)

    logger.info("Finished run: state=%s listings=%d", snapshot.state.value, snapshot.collected_count)
    return snapshot


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect business listings and export them to CSV")
    parser.add_argument("--category", required=True, help="Business category or search term, e.g. Restaurants")
    parser.add_argument("--location", required=True, help="Location to search, e.g. 'Toronto, ON'")
    parser.add_argument("--delay", dest="request_delay", type=float, help="Seconds between upstream requests")
    parser.add_argument("--page-limit", dest="page_limit", type=int, help="Records requested per page")
    parser.add_argument("--max-pages", dest="max_pages", type=int, help="Stop after this many pages")
    parser.add_argument("--dedupe", action="store_true", help="Drop repeated (name, address, city) listings")
    parser.add_argument("--output", help="CSV path (default business_data_<date>.csv)")
    return parser


def main(argv=None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        snapshot = run_collection_job(
            category=args.category,
            location=args.location,
            request_delay=args.request_delay,
            page_limit=args.page_limit,
            max_pages=args.max_pages,
            dedupe=args.dedupe,
            output=args.output,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc

    if snapshot.state is RunState.FAILED:
        logger.error("Collection failed: %s", snapshot.last_error)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
