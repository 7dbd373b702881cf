"""Analysis phases for LOO-PIT calibration diagnostics.

Phases (in order):
  01_loo_pit        — PIT values, boundary correction, overlay/group plots, report
  02_pit_animation  — Animated accumulation of PIT values in observation order

Shared infrastructure at root: run_context.py, report.py

Numbered phase directories are not valid identifiers, so a meta-path finder maps
``from analysis.loo_pit import X`` onto ``analysis.01_loo_pit.loo_pit``.
"""

from __future__ import annotations

import importlib
import sys
import types
from importlib.abc import MetaPathFinder
from importlib.machinery import ModuleSpec

_MODULE_MAP: dict[str, str] = {
    "loo_pit": "01_loo_pit",
    "loo_pit_data": "01_loo_pit",
    "loo_pit_report": "01_loo_pit",
    "pit_animation": "02_pit_animation",
}


class _AliasLoader:
    """Imports the real module and exposes it under the alias name."""

    def __init__(self, real_name: str) -> None:
        self.real_name = real_name

    def create_module(self, spec: ModuleSpec) -> types.ModuleType | None:
        return None

    def exec_module(self, module: types.ModuleType) -> None:
        real = importlib.import_module(self.real_name)
        sys.modules[module.__name__] = real


class _PhaseRedirectFinder(MetaPathFinder):
    """Redirect ``analysis.<name>`` to ``analysis.<NN_phase>.<name>``."""

    def find_spec(
        self,
        fullname: str,
        path: object = None,
        target: types.ModuleType | None = None,
    ) -> ModuleSpec | None:
        parts = fullname.split(".")
        if len(parts) == 2 and parts[0] == "analysis" and parts[1] in _MODULE_MAP:
            real = f"analysis.{_MODULE_MAP[parts[1]]}.{parts[1]}"
            return ModuleSpec(fullname, _AliasLoader(real))
        return None


if not any(isinstance(f, _PhaseRedirectFinder) for f in sys.meta_path):
    sys.meta_path.insert(0, _PhaseRedirectFinder())
