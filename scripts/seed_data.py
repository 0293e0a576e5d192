"""
Demo data seeding for the jewelry inventory.

Generates a deterministic catalog (categories, vendors, pieces with stones)
from a seed and writes it through the application services, so every row
passes the same validation and code checks as real input.
"""

from __future__ import annotations

import asyncio
import random
import sys
import time
from decimal import Decimal
from typing import Any, Dict, List

import typer

from jewelry_inventory.config import get_settings
from jewelry_inventory.infrastructure.db_factory import PoolManager
from jewelry_inventory.services import Services, build_services
from jewelry_inventory.utils.logging import configure_logging

app = typer.Typer(help="Seed deterministic demo data through the inventory services.")

CATEGORIES = [
    {"name": "Rings", "code": "RNG"},
    {"name": "Necklaces", "code": "NCK"},
    {"name": "Earrings", "code": "EAR"},
    {"name": "Bangles", "code": "BNG"},
]
VENDORS = [
    {"name": "Ravi Kumar", "company": "Kumar Gold Works", "rating": Decimal("4.5")},
    {"name": "Anita Shah", "company": "Shah Jewellers", "rating": Decimal("4.0")},
    {"name": "Marco Bianchi", "company": "Bianchi Oro", "rating": Decimal("3.5")},
]
STONES = [
    ("RD", "Round Diamond"),
    ("EM", "Emerald"),
    ("RB", "Ruby"),
    ("SP", "Sapphire"),
    ("PL", "Pearl"),
]
PURITIES = [14, 18, 22, 24]


def _money(value: float) -> Decimal:
    return Decimal(f"{value:.2f}")


def _weight(value: float) -> Decimal:
    return Decimal(f"{value:.3f}")


def generate_pieces(count: int, seed: int) -> List[Dict[str, Any]]:
    """
    Build ``count`` piece payloads with their stones.

    Each item is ``{"category": <index>, "vendor": <index>, "piece": {...},
    "stones": [...]}``; the same seed always yields the same catalog.
    """
    rng = random.Random(seed)
    items = []
    for index in range(count):
        net_weight = rng.uniform(2, 40)
        stones = [
            {
                "stone_code": code,
                "stone_name": name,
                "weight": _weight(rng.uniform(0.05, 2)),
                "cost_price": _money(rng.uniform(50, 2_000)),
            }
            for code, name in sorted(rng.sample(STONES, rng.randint(0, 3)))
        ]
        gold_rate = rng.uniform(50, 80)
        total_gold = net_weight * gold_rate
        stone_cost = sum(float(stone["cost_price"]) for stone in stones)
        items.append(
            {
                "category": rng.randrange(len(CATEGORIES)),
                "vendor": rng.randrange(len(VENDORS)),
                "piece": {
                    "name": f"Demo piece {index + 1}",
                    "gross_weight": _weight(net_weight * 1.05),
                    "net_weight": _weight(net_weight),
                    "gold_purity": rng.choice(PURITIES),
                    "gold_rate": _money(gold_rate),
                    "total_gold_price": _money(total_gold),
                    "total_stone_cost": _money(stone_cost),
                    "sale_price": _money((total_gold + stone_cost) * 1.3),
                    "status": rng.choice(["In Stock", "In Stock", "Reserved", "Sold"]),
                },
                "stones": stones,
            }
        )
    return items


async def _seed(services: Services, count: int, seed: int) -> int:
    categories = [await services.categories.create(row) for row in CATEGORIES]
    vendors = [await services.vendors.create(row) for row in VENDORS]
    for item in generate_pieces(count, seed):
        piece = {
            **item["piece"],
            "category_id": categories[item["category"]]["id"],
            "vendor_id": vendors[item["vendor"]]["id"],
        }
        await services.jewelry.create_with_stones(piece, item["stones"])
    return count


async def _seed_with_pool(count: int, seed: int) -> int:
    async with PoolManager() as pool:
        return await _seed(build_services(pool), count, seed)


@app.command()
def main(
    pieces: int = typer.Option(
        25,
        "--pieces",
        "-p",
        min=0,
        help="Number of jewelry pieces to create.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
) -> None:
    """
    Create demo categories, vendors and pieces with stones.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    start = time.perf_counter()
    created = asyncio.run(_seed_with_pool(pieces, seed))
    typer.echo(
        f"Seeded {len(CATEGORIES)} categories, {len(VENDORS)} vendors and {created} pieces "
        f"in {time.perf_counter() - start:.2f}s."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
