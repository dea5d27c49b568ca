"""
Writer — serialize the aggregate build report.

Filesystem layout per aggregate run:
    <output_dir>/build_report.json
"""
import json
from pathlib import Path

from native_build.io.schema import AggregateReport

REPORT_NAME = "build_report.json"


def write_report(report: AggregateReport, output_dir: Path) -> Path:
    """
    Write build_report.json into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the report path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / REPORT_NAME

    payload = report.model_dump(mode="json")
    payload["status"] = report.compute_status()
    report_path.write_text(
        json.dumps(payload, indent=2, sort_keys=True) + "\n"
    )
    return report_path


def load_report(path: Path) -> AggregateReport:
    data = json.loads(Path(path).read_text())
    data.pop("status", None)
    return AggregateReport.model_validate(data)
