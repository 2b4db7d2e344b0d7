"""JSC payroll computation and run-processing engine."""

__version__ = "1.0.0"
