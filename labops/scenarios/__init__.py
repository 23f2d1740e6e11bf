from .model import (
    RunPlan,
    ScenarioModel,
    build_run_plan,
    load_run_plan,
    load_scenario_model_file,
    parse_scenario_model_text,
)
from .validator import ValidationIssue, ValidationReport, validate_scenario_file, validate_scenario_text

__all__ = [
    "RunPlan",
    "ScenarioModel",
    "ValidationIssue",
    "ValidationReport",
    "build_run_plan",
    "load_run_plan",
    "load_scenario_model_file",
    "parse_scenario_model_text",
    "validate_scenario_file",
    "validate_scenario_text",
]
