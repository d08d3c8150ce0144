from __future__ import annotations

import argparse
import json
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq

from lifecycle_engine.telemetry.loaders import flatten_record


def _export(input_path: Path, output_path: Path) -> int:
    rows: list[dict[str, object]] = []
    with input_path.open("r", encoding="utf-8-sig") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            rows.append(flatten_record(json.loads(line)))

    columns = sorted({key for row in rows for key in row})
    table_out = pa.table({col: [row.get(col) for row in rows] for col in columns})
    output_path.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(table_out, output_path)
    return len(rows)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--input", required=True, help="Snapshot JSONL")
    parser.add_argument("--output", default="data/snapshots/fleet.parquet")
    args = parser.parse_args()

    out_path = Path(args.output)
    count = _export(Path(args.input), out_path)
    print(f"Wrote {count} snapshots to {out_path}")


if __name__ == "__main__":
    main()
