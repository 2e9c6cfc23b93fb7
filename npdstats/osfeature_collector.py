"""Guest OS feature metrics derived from the kernel command line and modules."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Iterable

from npdstats.config import OSFeatureStatsConfig
from npdstats.kernel import CmdlineArg, Module, cmdline_args, contains_module, module_from_dict, modules
from npdstats.labels import FEATURE_LABEL, VALUE_LABEL
from npdstats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_CMDLINE_FEATURES = {
    "csm.enabled": "KTD",
    "systemd.unified_cgroup_hierarchy": "UnifiedCgroupHierarchy",
    "module.sig_enforce": "ModuleSigned",
    "loadpin.enabled": "LoadPinEnabled",
}


def _parse_int(text: str) -> int:
    """Parse a decimal integer; invalid text gives 0, out-of-range values are clamped."""
    if _INTEGER.fullmatch(text) is None:
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


class OSFeatureCollector:
    """Records which guest OS features are enabled (1) or disabled (0)."""

    def __init__(self, os_feature_config: OSFeatureStatsConfig, proc_path: str) -> None:
        self.config = os_feature_config
        self.proc_path = proc_path
        self.os_feature: Int64Metric | None = None

        entry = os_feature_config.metrics_configs.get(MetricID.OS_FEATURE.value)
        display_name = entry.display_name if entry is not None else ""
        if display_name:
            self.os_feature = new_int64_metric(
                MetricID.OS_FEATURE,
                display_name,
                "OS Features like GPU support, KTD kernel, third party modules as unknown "
                "modules. 1 if the feature is enabled and 0, if disabled.",
                "1",
                Aggregation.LAST_VALUE,
                [FEATURE_LABEL, VALUE_LABEL],
            )

    def record_features_from_cmdline(self, cmdline_args: Iterable[CmdlineArg]) -> None:
        """Record KTD, UnifiedCgroupHierarchy and KernelModuleIntegrity."""
        features = dict.fromkeys(_CMDLINE_FEATURES.values(), 0)
        for arg in cmdline_args:
            feature = _CMDLINE_FEATURES.get(arg.key)
            if feature is not None:
                features[feature] = _parse_int(arg.value)

        metric = self.os_feature
        metric.record({FEATURE_LABEL: "KTD"}, features["KTD"])
        metric.record({FEATURE_LABEL: "UnifiedCgroupHierarchy"}, features["UnifiedCgroupHierarchy"])
        integrity = int(features["ModuleSigned"] == 1 and features["LoadPinEnabled"] == 1)
        metric.record({FEATURE_LABEL: "KernelModuleIntegrity"}, integrity)

    def _known_modules(self) -> list[Module]:
        path = self.config.known_modules_config_path
        try:
            with open(path, encoding="utf-8") as handle:
                content = handle.read()
        except OSError as err:
            logger.warning("Failed to read configuration file %s: %s", path, err)
            return []
        try:
            data = json.loads(content)
            if not isinstance(data, list):
                raise ValueError("known modules must be a JSON array")
            return [module_from_dict(entry) for entry in data]
        except ValueError as err:
            logger.warning("Failed to retrieve known modules %s", err)
            return []

    def record_features_from_modules(self, modules: Iterable[Module]) -> None:
        """Record GPUSupport and the out-of-tree or proprietary modules not known to the config."""
        known = self._known_modules()
        has_gpu_support = 0
        unknown: list[str] = []
        for module in modules:
            if "nvidia" in module.module_name:
                has_gpu_support = 1
            elif (module.out_of_tree or module.proprietary) and not contains_module(
                module.module_name, known
            ):
                unknown.append(module.module_name)

        metric = self.os_feature
        if unknown:
            metric.record({FEATURE_LABEL: "UnknownModules", VALUE_LABEL: ",".join(unknown)}, 1)
        else:
            metric.record({FEATURE_LABEL: "UnknownModules"}, 0)
        metric.record({FEATURE_LABEL: "GPUSupport"}, has_gpu_support)

    def collect(self) -> None:
        """Read the kernel command line and modules and record the features."""
        if self.os_feature is None:
            return
        self.record_features_from_cmdline(cmdline_args(os.path.join(self.proc_path, "cmdline")))
        self.record_features_from_modules(modules(os.path.join(self.proc_path, "modules")))