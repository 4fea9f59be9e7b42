"""Text and CSV product reports."""

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from grocery_scraper.ingest.base import Product

logger = logging.getLogger(__name__)

CURRENCY = "₴"

CSV_COLUMNS = [
    "Category",
    "Name",
    "Price",
    "Old Price",
    "Bulk Price",
    "Discount",
    "Is On Sale",
]


def format_product(product: Product) -> List[str]:
    """Render one product as report lines."""
    category = product.category or "Unknown"
    if product.is_on_sale:
        lines = [
            f"[SALE] {product.name}",
            f"  Category: {category}",
            f"  Old Price: {product.old_price} {CURRENCY}",
            f"  New Price: {product.price} {CURRENCY}",
        ]
        if product.discount:
            lines.append(f"  Discount: {product.discount}")
    else:
        lines = [
            product.name,
            f"  Category: {category}",
            f"  Price: {product.price} {CURRENCY}",
        ]
    if product.is_bulk:
        lines.append(f"  Bulk Price: {product.bulk_price} {CURRENCY}")
    return lines


def write_text_report(
    products: List[Product],
    path: Path,
    generated_at: Optional[datetime] = None,
) -> Path:
    """
    Write a human-readable product list.

    Args:
        products: Products in output order
        path: Destination file
        generated_at: Timestamp shown in the header (defaults to now)

    Returns:
        Path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    generated_at = generated_at or datetime.now()

    with open(path, "w", encoding="utf-8") as f:
        f.write(f"Total Products: {len(products)}\n")
        f.write(f"Generated: {generated_at:%Y-%m-%d %H:%M:%S}\n")
        f.write("=" * 80 + "\n\n")
        for product in products:
            f.write("\n".join(format_product(product)) + "\n\n")

    logger.info(f"Products saved to {path}")
    return path


def write_csv_report(products: Iterable[Product], path: Path) -> Path:
    """
    Write products as CSV, one row per product.

    Args:
        products: Products in output order
        path: Destination file

    Returns:
        Path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_COLUMNS)
        for product in products:
            writer.writerow([
                product.category or "Unknown",
                product.name,
                product.price,
                "" if product.old_price is None else product.old_price,
                "" if product.bulk_price is None else product.bulk_price,
                product.discount or "",
                "Yes" if product.is_on_sale else "No",
            ])

    logger.info(f"CSV saved to {path}")
    return path


def save_all_results(results: Mapping[str, List[Product]], output_dir: Path) -> List[Path]:
    """
    Write per-file reports plus combined text and CSV reports.

    Args:
        results: Products keyed by link file name
        output_dir: Report directory

    Returns:
        Paths of all written reports
    """
    output_dir = Path(output_dir)
    written = []

    for file_name, products in results.items():
        report_path = output_dir / f"{Path(file_name).stem}_products.txt"
        written.append(write_text_report(products, report_path))

    all_products = [product for products in results.values() for product in products]
    written.append(write_text_report(all_products, output_dir / "all_products.txt"))
    written.append(write_csv_report(all_products, output_dir / "all_products.csv"))
    return written
