import csv
import json
from datetime import datetime
from pathlib import Path

from conftest import make_ad, make_aad, make_mdm
from devicerecon.llm import annotate_result
from devicerecon.models import EnrollmentState
from devicerecon.reconciler import reconcile
from devicerecon.report import (
    generate_markdown_summary,
    report_basename,
    write_csv,
    write_defects,
    write_json,
)


def _sample_result():
    return reconcile(
        [make_ad("PC01", "G1"), make_ad("PC02", "G2"), make_ad("BROKEN", None)],
        [make_aad("PC02", "G2"), make_aad("PC02-old", "G2")],
        [make_mdm("PC02", "G2")],
    )


def test_write_csv_uses_fixed_column_order(tmp_path: Path):
    path = tmp_path / "report.csv"

    write_csv(path, _sample_result().devices)

    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0][0] == "Name"
    assert rows[0][-1] == "ObjectGUID"
    assert len(rows) == 3
    assert rows[1][3] == "Not AAD Registered"
    assert rows[2][3] == "PC02, PC02-old"
    assert rows[2][-1] == "G2"
    assert rows[1][2] == "True"


def test_write_json_includes_state(tmp_path: Path):
    path = tmp_path / "report.json"

    write_json(path, _sample_result().devices)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert [item["state"] for item in payload] == ["UNREGISTERED", "HEALTHY"]
    assert payload[0]["mdm"]["device_name"] == "Not MDM Enrolled"


def test_write_defects_lists_skipped_records(tmp_path: Path):
    path = tmp_path / "defects.csv"

    write_defects(path, _sample_result().defects)

    rows = list(csv.reader(path.open(newline="", encoding="utf-8")))
    assert rows == [["Name", "Enabled", "Reason"], ["BROKEN", "True", "missing canonical identifier"]]


def test_report_basename_is_timestamped():
    assert report_basename("DeviceReport", datetime(2024, 3, 29, 8, 5, 1)) == "DeviceReport_20240329-080501"


def test_markdown_summary_counts_states_and_defects():
    result = _sample_result()
    groups = {state: result.by_state(state) for state in EnrollmentState}
    annotations = annotate_result(groups, use_llm=False)

    markdown = generate_markdown_summary(
        result,
        annotations,
        cloud_total=2,
        managed_total=1,
        generated=datetime(2024, 3, 29, 8, 0),
    )

    assert "Generated: 2024-03-29T08:00:00" in markdown
    assert "- On-premises devices processed: **3**" in markdown
    assert "- Defective records skipped: **1**" in markdown
    assert "- HEALTHY: 1" in markdown
    assert "- UNREGISTERED: 1" in markdown
    assert "| UNREGISTERED | 1 | High |" in markdown
    assert "- BROKEN: missing canonical identifier" in markdown


def test_markdown_summary_all_healthy():
    result = reconcile([make_ad("PC01", "G1")], [make_aad("PC01", "G1")], [make_mdm("PC01", "G1")])

    markdown = generate_markdown_summary(result, {}, cloud_total=1, managed_total=1)

    assert "All devices are registered and enrolled." in markdown
    assert "- Defective records skipped: **0**" in markdown
    assert "## Defective records" not in markdown
