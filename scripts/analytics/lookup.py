"""
CRM Label Lookup
================

Per-run tables mapping pipeline, stage and owner ids to display labels.
Built once from what the CRM collaborator returned and only read afterwards.
Stage ids repeat across pipelines, so stage lookups key on
(pipeline_id, stage_id) whenever the pipeline is known.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from models.deal_models import Deal, Owner, Pipeline, Stage
from scripts.analytics.properties import DEAL_PIPELINE, DEAL_STAGE, get_str


class CrmLookup:
    """Pipeline, stage and owner labels for one run."""

    def __init__(
        self,
        pipelines: Iterable[Pipeline] = (),
        owners: Optional[Mapping[str, Owner]] = None,
    ):
        self.pipelines: List[Pipeline] = list(pipelines)
        self._pipelines: Dict[str, Pipeline] = {p.id: p for p in self.pipelines}
        self._stages: Dict[Tuple[str, str], Stage] = {}
        for pipeline in self.pipelines:
            for stage in pipeline.stages:
                self._stages[(pipeline.id, stage.id)] = stage
        self._owners: Dict[str, Owner] = dict(owners or {})

    # ------------------------------------------------------------------
    # Pipelines and stages
    # ------------------------------------------------------------------

    def pipeline(self, pipeline_id: Optional[str]) -> Optional[Pipeline]:
        if not pipeline_id:
            return None
        return self._pipelines.get(pipeline_id)

    def pipeline_label(self, pipeline_id: Optional[str]) -> Optional[str]:
        pipeline = self.pipeline(pipeline_id)
        return pipeline.label if pipeline else None

    def stage(self, stage_id: Optional[str], pipeline_id: Optional[str] = None) -> Optional[Stage]:
        """Stage by id, scoped to ``pipeline_id`` when given.

        Without a pipeline id the first pipeline (in CRM order) holding the
        stage id wins.
        """
        if not stage_id:
            return None
        if pipeline_id:
            return self._stages.get((pipeline_id, stage_id))
        for (_, sid), stage in self._stages.items():
            if sid == stage_id:
                return stage
        return None

    def stage_label(self, stage_id: Optional[str], pipeline_id: Optional[str] = None) -> Optional[str]:
        stage = self.stage(stage_id, pipeline_id)
        return stage.label if stage else None

    def find_stage_ids(
        self,
        labels: Sequence[str],
        pipeline_id: Optional[str] = None,
    ) -> List[str]:
        """Stage ids whose label contains any of ``labels`` (case-insensitive)."""
        wanted = [label.lower().strip() for label in labels if label.strip()]
        stage_ids: List[str] = []
        for pipeline in self.pipelines:
            if pipeline_id and pipeline.id != pipeline_id:
                continue
            for stage in pipeline.stages:
                normalized = stage.label.lower().strip()
                if any(label in normalized for label in wanted) and stage.id not in stage_ids:
                    stage_ids.append(stage.id)
        return stage_ids

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def owner(self, owner_id: Optional[str]) -> Optional[Owner]:
        if not owner_id:
            return None
        return self._owners.get(owner_id)

    def owner_name(self, owner_id: Optional[str]) -> Optional[str]:
        owner = self.owner(owner_id)
        return owner.full_name if owner else None

    # ------------------------------------------------------------------
    # Deal shortcuts
    # ------------------------------------------------------------------

    def deal_stage_label(self, deal: Deal) -> Optional[str]:
        return self.stage_label(get_str(deal, DEAL_STAGE), get_str(deal, DEAL_PIPELINE))
