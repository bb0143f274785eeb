"""High-level orchestration for the device reconciliation run."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from .llm import annotate_result
from .normalization import load_sources
from .progress import ProgressCallback
from .reconciler import ReconciliationResult, reconcile
from .report import (
    generate_markdown_summary,
    report_basename,
    write_csv,
    write_defects,
    write_json,
    write_markdown,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunArtifacts:
    result: ReconciliationResult
    csv_path: Path
    json_path: Path
    report_path: Path
    defects_path: Path | None


def run_reconciliation(
    *,
    ad_path: Path,
    aad_path: Path,
    mdm_path: Path,
    out_dir: Path,
    prefix: str = "DeviceReport",
    progress: Optional[ProgressCallback] = None,
    use_llm: bool = True,
    generated: datetime | None = None,
) -> RunArtifacts:
    authoritative, cloud, managed = load_sources(ad_path, aad_path, mdm_path)
    LOGGER.info(
        "Loaded %d on-premises, %d cloud directory and %d MDM devices",
        len(authoritative),
        len(cloud),
        len(managed),
    )

    result = reconcile(authoritative, cloud, managed, progress=progress)
    counts = result.counts()
    for state, count in sorted(counts.items(), key=lambda item: item[0].value):
        LOGGER.info("%s: %d", state.value, count)
    if result.defects:
        LOGGER.warning("%d on-premises records were skipped as defective", len(result.defects))

    groups = {state: result.by_state(state) for state in counts}
    annotations = annotate_result(groups, use_llm=use_llm)

    generated = generated or datetime.now()
    stem = report_basename(prefix, generated)
    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / f"{stem}.csv"
    json_path = out_dir / f"{stem}.json"
    report_path = out_dir / f"{stem}.md"
    defects_path = out_dir / f"{stem}_defects.csv" if result.defects else None

    write_csv(csv_path, result.devices)
    write_json(json_path, result.devices)
    if defects_path is not None:
        write_defects(defects_path, result.defects)
    markdown = generate_markdown_summary(
        result,
        annotations,
        cloud_total=len(cloud),
        managed_total=len(managed),
        generated=generated,
    )
    write_markdown(report_path, markdown)
    LOGGER.info("Report written to %s", csv_path)

    return RunArtifacts(
        result=result,
        csv_path=csv_path,
        json_path=json_path,
        report_path=report_path,
        defects_path=defects_path,
    )
