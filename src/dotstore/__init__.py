from .config import Config, ConfigContext, Entry, Settings
from .repo import ConfigRepo
from .ingest import IngestResult, ingest
from .deploy import DeployReport, UndeployReport, deploy, undeploy, restore_files
from .sync import MergeAnalysis, UpdateResult, ensure_not_behind, fetch_and_classify, plan_update
from .signature import Signature
from .exceptions import DotstoreError

__all__ = [
    "Config", "ConfigContext", "Entry", "Settings", "ConfigRepo",
    "IngestResult", "ingest",
    "DeployReport", "UndeployReport", "deploy", "undeploy", "restore_files",
    "MergeAnalysis", "UpdateResult", "ensure_not_behind", "fetch_and_classify", "plan_update",
    "Signature", "DotstoreError",
]
