import argparse
import asyncio
import logging
import sys
from typing import Dict, List

from labeler.core.config import settings
from labeler.services.assets import AssetService
from labeler.services.storage import LocalFileStorage
from labeler.utils.labels import build_region_orders, label_resolves, value_rank

logger = logging.getLogger(__name__)


async def check(root: str) -> Dict[str, List[str]]:
    """Map of document name -> problems found in its label file."""
    assets = AssetService(LocalFileStorage(root), settings)
    fields_file = await assets.read_fields()
    if fields_file is None:
        return {settings.fields_file: ["missing"]}

    problems: Dict[str, List[str]] = {}
    for name in await assets.list_documents():
        issues: List[str] = []
        labels = await assets.read_labels(name)
        logger.debug("checking %s (%d labels)", name, len(labels))
        analyze_result = await assets.read_analyze_result(name)
        orders = build_region_orders(analyze_result) if analyze_result else None
        for label in labels:
            if not label_resolves(label, fields_file.fields, fields_file.definitions):
                issues.append(f"label '{label.label}' does not resolve to a field")
            pages = {v.page for v in label.value}
            if len(pages) > 1:
                issues.append(f"label '{label.label}' spans pages {sorted(pages)}")
            if orders and label.label_type is None:
                ranks = [value_rank(v, orders) for v in label.value]
                known = [r for r in ranks if r is not None]
                if known != sorted(known):
                    issues.append(f"label '{label.label}' values are not in reading order")
        if issues:
            problems[name] = issues
    return problems


def main():
    p = argparse.ArgumentParser(description="Check that every saved label matches the field schema.")
    p.add_argument("--root", dest="root", default=settings.storage_root, help="Project folder")
    p.add_argument("--verbose", dest="verbose", action="store_true")
    args = p.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    problems = asyncio.run(check(args.root))
    if not problems:
        print(f"All labels in {args.root} are consistent with {settings.fields_file}")
        return
    for name, issues in problems.items():
        print(f"{name}:")
        for issue in issues:
            print(f"  - {issue}")
    sys.exit(1)


if __name__ == "__main__":
    main()
