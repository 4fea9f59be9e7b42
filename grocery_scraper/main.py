"""Command-line runner: scrape link files and write reports."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from grocery_scraper.config import Settings, settings
from grocery_scraper.ingest.base import BrowserDriver, FatalScrapeError, Product, UnsupportedLinkFileError
from grocery_scraper.ingest.catalog_scraper import CatalogScraper
from grocery_scraper.ingest.pacing import PacingPolicy
from grocery_scraper.ingest.profiles import ProfileRegistry
from grocery_scraper.ingest.session_recovery import HumanSolveChannel
from grocery_scraper.ingest.session_store import SessionStore
from grocery_scraper.logging_config import setup_logging
from grocery_scraper.report.writer import save_all_results

logger = logging.getLogger(__name__)

DriverFactory = Callable[[], BrowserDriver]


def load_urls(path: Path) -> List[str]:
    """Read one URL per line, skipping blank lines."""
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


async def process_file(
    path: Path,
    config: Optional[Settings] = None,
    driver_factory: Optional[DriverFactory] = None,
    solve_channel: Optional[HumanSolveChannel] = None,
    pacing: Optional[PacingPolicy] = None,
) -> List[Product]:
    """
    Scrape every URL of one link file.

    Args:
        path: Link file, named ``<Prefix>_<Category>[...].txt``
        config: Settings (defaults to global settings)
        driver_factory: Creates the browser driver for this file
        solve_channel: Operator channel for manual challenge solving
        pacing: Pacing policy override

    Returns:
        Products scraped; partial results if the browser session crashed

    Raises:
        UnsupportedLinkFileError: If no profile matches the file name
    """
    config = config or settings
    path = Path(path)
    profile, category = ProfileRegistry.resolve_link_file(path.name)

    urls = load_urls(path)
    logger.info(f"Processing {path.name}: {len(urls)} URLs, profile={profile.name}, category={category}")

    scraper = CatalogScraper(
        profile,
        category=category,
        driver=driver_factory() if driver_factory else None,
        config=config,
        pacing=pacing,
        solve_channel=solve_channel,
    )
    try:
        return await scraper.scrape(urls)
    except FatalScrapeError as e:
        logger.error(f"{path.name}: {e}; keeping {len(e.products)} products")
        return e.products


async def process_all_files(
    directory: Path,
    pattern: Optional[str] = None,
    config: Optional[Settings] = None,
    concurrency: Optional[int] = None,
    **kwargs,
) -> Dict[str, List[Product]]:
    """
    Scrape every link file in a directory.

    Files run concurrently up to ``concurrency``, one browser session each.
    Files with no matching profile are skipped with a warning.

    Args:
        directory: Directory holding link files
        pattern: Glob for link files (defaults to settings)
        config: Settings (defaults to global settings)
        concurrency: Max files in flight (defaults to settings)
        **kwargs: Passed through to process_file

    Returns:
        Products keyed by file name, in file name order
    """
    config = config or settings
    directory = Path(directory)
    pattern = pattern or config.link_file_pattern
    concurrency = max(1, concurrency or config.max_concurrent_files)

    if not directory.is_dir():
        logger.error(f"Link directory not found: {directory}")
        return {}

    files = sorted(directory.glob(pattern))
    if not files:
        logger.warning(f"No link files matching {pattern} in {directory}")
        return {}

    logger.info(f"Found {len(files)} link files in {directory} (concurrency={concurrency})")
    semaphore = asyncio.Semaphore(concurrency)

    async def _run(path: Path) -> Optional[List[Product]]:
        async with semaphore:
            try:
                return await process_file(path, config=config, **kwargs)
            except UnsupportedLinkFileError as e:
                logger.warning(f"Skipping {path.name}: {e}")
            except Exception as e:
                logger.error(f"Failed to process {path.name}: {e}", exc_info=True)
            return None

    outcomes = await asyncio.gather(*(_run(path) for path in files))
    return {
        path.name: products
        for path, products in zip(files, outcomes)
        if products is not None
    }


def log_summary(results: Dict[str, List[Product]]) -> None:
    total_products = 0
    total_sale = 0

    for file_name, products in results.items():
        sale_count = sum(1 for p in products if p.is_on_sale)
        total_products += len(products)
        total_sale += sale_count
        logger.info(
            f"{file_name}: {len(products)} products, {sale_count} on sale, "
            f"{len(products) - sale_count} regular"
        )

    logger.info(
        f"Processed {len(results)} files: {total_products} products, "
        f"{total_sale} on sale, {total_products - total_sale} regular"
    )


def reset_sessions(stores: List[str], config: Optional[Settings] = None) -> None:
    """Forget saved cookies and session metadata of the given stores."""
    config = config or settings
    store = SessionStore(base_path=config.session_storage_path)
    for name in stores:
        if store.has_storage_state(name) or store.load_metadata(name):
            store.clear_session(name)
        else:
            logger.info(f"No saved session for {name}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape grocery catalog pages into product reports")
    parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        help="Link files to process (default: all files in --sites-dir)",
    )
    parser.add_argument("--sites-dir", type=Path, default=None, help="Directory with link files")
    parser.add_argument("--pattern", default=None, help="Glob for link files (default: *Links_*.txt)")
    parser.add_argument("--output-dir", type=Path, default=None, help="Report directory")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of link files processed in parallel (default: 1)",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument(
        "--allow-solve",
        action="store_true",
        help="Pause for manual challenge solving in the browser window",
    )
    parser.add_argument(
        "--reset-session",
        action="append",
        default=[],
        choices=ProfileRegistry.list_profiles(),
        metavar="STORE",
        help="Discard the saved browser session of a store before scraping (repeatable)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser


def config_from_args(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    """Overlay command-line overrides on the settings."""
    base = base or settings
    update = {}
    if args.headed:
        update["headless"] = False
    if args.allow_solve:
        update["allow_human_challenge_solve"] = True
    if args.log_level:
        update["log_level"] = args.log_level
    if args.sites_dir:
        update["sites_dir"] = str(args.sites_dir)
    if args.pattern:
        update["link_file_pattern"] = args.pattern
    if args.output_dir:
        update["output_dir"] = str(args.output_dir)
    if args.concurrency:
        update["max_concurrent_files"] = args.concurrency
    return base.model_copy(update=update)


async def run(config: Settings, files: Optional[List[Path]] = None) -> Dict[str, List[Product]]:
    if files:
        results: Dict[str, List[Product]] = {}
        for path in files:
            try:
                results[Path(path).name] = await process_file(path, config=config)
            except UnsupportedLinkFileError as e:
                logger.warning(f"Skipping {Path(path).name}: {e}")
    else:
        results = await process_all_files(Path(config.sites_dir), config=config)

    if results:
        log_summary(results)
        save_all_results(results, Path(config.output_dir))
    else:
        logger.warning("No products scraped")
    return results


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    setup_logging(config=config)

    try:
        reset_sessions(args.reset_session, config)
        asyncio.run(run(config, args.files))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
