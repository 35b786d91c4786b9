"""
Command-line entry points for pipeline scripts.

Installed by the [project.scripts] section of pyproject.toml:

    survival-disparity-simulate    # Run step 00
    survival-disparity-estimate    # Run step 01
    survival-disparity-run-all     # Run both steps

These are wrappers around the scripts/ directory files.
"""

import subprocess
import sys

from survival_disparity.paths import get_project_root


STEPS = [
    ("00_simulate_cohort.py", "Simulating demonstration cohort"),
    ("01_estimate_disparity.py", "Estimating survival disparity"),
]


def _run_script(script_name: str) -> int:
    """Run a pipeline script and return its exit code."""
    script_path = get_project_root() / "scripts" / script_name

    if not script_path.exists():
        print(f"Error: Script not found: {script_path}", file=sys.stderr)
        return 1

    result = subprocess.run([sys.executable, str(script_path)], cwd=get_project_root())
    return result.returncode


def run_00_simulate() -> int:
    """Run step 00: Simulate the demonstration cohort."""
    return _run_script("00_simulate_cohort.py")


def run_01_estimate() -> int:
    """Run step 01: Impute, fit, predict and summarize."""
    return _run_script("01_estimate_disparity.py")


def run_all() -> int:
    """
    Run every step in order.

    Returns the first non-zero exit code, or 0 if all succeed.
    """
    print("=" * 60)
    print("Survival Disparity - Full Pipeline")
    print("=" * 60)

    for script_name, description in STEPS:
        print(f"\n[{description}]")
        print("-" * 40)

        exit_code = _run_script(script_name)
        if exit_code != 0:
            print(f"\nPipeline failed at: {script_name}")
            return exit_code

    print("\n" + "=" * 60)
    print("Full pipeline completed successfully")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(run_all())
