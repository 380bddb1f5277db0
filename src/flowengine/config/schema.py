"""Pydantic schemas defining the control configuration contract."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SettingsConfig(BaseModel):
    log: bool = True
    log_level: str = "info"
    json_logs: bool = False
    log_dir: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        allowed = {"debug", "info", "warning", "error", "critical"}
        if value.lower() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}, got '{value}'")
        return value.lower()


class VarsConfig(BaseModel):
    feature_vars: List[str] = Field(default_factory=list)
    protected_vars: List[str] = Field(default_factory=list)
    target_var: Optional[str] = None
    protected_vars_binary: List[str] = Field(default_factory=list)

    @property
    def model_vars(self) -> List[str]:
        return [*self.feature_vars, *self.protected_vars]


class DataConfig(BaseModel):
    """Data references. ``full`` is the unsplit frame; ``train``/``test`` are bound per split."""

    source: Optional[str] = None
    full: Any = None
    train: Any = None
    test: Any = None
    vars: VarsConfig = Field(default_factory=VarsConfig)


class StageConfig(BaseModel):
    """Parameter block for one pipeline stage."""

    model_config = ConfigDict(extra="allow")

    params: Dict[str, Any] = Field(default_factory=dict)
    data: Any = None


class SplitStageConfig(StageConfig):
    seed: int = 123
    target_var: Optional[str] = None


class TrainStageConfig(StageConfig):
    formula: Optional[str] = None
    norm_data: bool = True


class EvalStageConfig(StageConfig):
    eval_data: Any = None
    protected_name: List[str] = Field(default_factory=list)


class PostprocessingStageConfig(StageConfig):
    postprocessing_data: Any = None
    protected_name: List[str] = Field(default_factory=list)


class PublishStageConfig(StageConfig):
    output_folder: str = "publish"


class ParamsConfig(BaseModel):
    split: SplitStageConfig = Field(default_factory=SplitStageConfig)
    execution: StageConfig = Field(default_factory=StageConfig)
    preprocessing: StageConfig = Field(default_factory=StageConfig)
    train: TrainStageConfig = Field(default_factory=TrainStageConfig)
    inprocessing: StageConfig = Field(default_factory=StageConfig)
    postprocessing: PostprocessingStageConfig = Field(default_factory=PostprocessingStageConfig)
    eval: EvalStageConfig = Field(default_factory=EvalStageConfig)
    reportelement: StageConfig = Field(default_factory=StageConfig)
    report: StageConfig = Field(default_factory=StageConfig)
    publish: PublishStageConfig = Field(default_factory=PublishStageConfig)


class ControlConfig(BaseModel):
    """Top-level configuration threaded through every engine call."""

    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    global_seed: int = 1
    data: DataConfig = Field(default_factory=DataConfig)

    split_method: str = "split_random"
    execution: str = "execution_basic_sequential"
    workflow: str = "workflow_single"
    preprocessing: Optional[str] = None
    train_model: str = "train_lm"
    inprocessing: Optional[str] = None
    postprocessing: Optional[str] = None
    evaluation: List[str] = Field(default_factory=lambda: ["eval_mse"])
    reportelement: Dict[str, str] = Field(default_factory=dict)
    report: Dict[str, str] = Field(default_factory=dict)
    publish: Dict[str, str] = Field(default_factory=dict)
    output_type: str = "response"

    params: ParamsConfig = Field(default_factory=ParamsConfig)
    internal_skip_validation: bool = False

    @field_validator("evaluation", mode="before")
    @classmethod
    def _coerce_evaluation(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("output_type")
    @classmethod
    def _check_output_type(cls, value: str) -> str:
        if value not in {"response", "prob"}:
            raise ValueError(f"output_type must be 'response' or 'prob', got '{value}'")
        return value

    @model_validator(mode="after")
    def _check_publish_targets(self) -> "ControlConfig":
        targets = self.params.publish.params
        for alias in self.publish:
            if alias not in targets:
                raise ValueError(f"publish alias '{alias}' needs an entry in params.publish.params")
        return self

    def copy_for_split(self, train: Any, test: Any) -> "ControlConfig":
        """Return a deep copy with one split's data bound in."""

        clone = self.model_copy(deep=True)
        clone.data.train = train
        clone.data.test = test
        return clone


__all__ = [
    "ControlConfig",
    "DataConfig",
    "EvalStageConfig",
    "ParamsConfig",
    "PostprocessingStageConfig",
    "PublishStageConfig",
    "SettingsConfig",
    "SplitStageConfig",
    "StageConfig",
    "TrainStageConfig",
    "VarsConfig",
]
