"""
Benchmark and Profiling Module for the Queue Orchestration Engine.

Provides:
- Function-level profiling with a decorator (plain and coroutine functions)
- Benchmark runner with statistical analysis
- A demo-salon benchmark of enqueue, assignment and reconciliation

Usage:
    # Run benchmarks
    python benchmark.py

    # Use profiling decorator
    @profile_function
    async def my_coroutine():
        pass
"""
import asyncio
import functools
import inspect
import statistics
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from rich.console import Console
from rich.table import Table


console = Console()


# =============================================================================
# PROFILING DECORATOR
# =============================================================================

@dataclass
class ProfileResult:
    """Result of profiling a function call."""
    function_name: str
    execution_time: float
    timestamp: datetime = field(default_factory=datetime.now)
    success: bool = True
    error: Optional[str] = None


# Global profiling data store
_profile_data: Dict[str, List[ProfileResult]] = {}


def _record(func_name: str, started: float, success: bool, error: Optional[str]) -> None:
    _profile_data.setdefault(func_name, []).append(ProfileResult(
        function_name=func_name,
        execution_time=time.perf_counter() - started,
        success=success,
        error=error,
    ))


def profile_function(func: Callable) -> Callable:
    """
    Decorator to profile function execution time.

    Coroutine functions are timed across the awaited call, not just the
    coroutine creation.

    Results are stored in _profile_data and can be retrieved via get_profile_summary()
    """
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _record(func.__qualname__, started, False, str(e))
                raise
            _record(func.__qualname__, started, True, None)
            return result

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            _record(func.__qualname__, started, False, str(e))
            raise
        _record(func.__qualname__, started, True, None)
        return result

    return wrapper


def get_profile_summary() -> Dict[str, Dict[str, Any]]:
    """
    Get summary of all profiled functions.

    Returns:
        Dictionary with function names as keys and stats as values
    """
    summary = {}

    for func_name, results in _profile_data.items():
        times = [r.execution_time for r in results]
        failures = sum(1 for r in results if not r.success)

        summary[func_name] = {
            "call_count": len(results),
            "success_count": len(results) - failures,
            "failure_count": failures,
            "total_time": sum(times),
            "avg_time": statistics.mean(times) if times else 0,
            "max_time": max(times) if times else 0,
        }

    return summary


def clear_profile_data() -> None:
    """Clear all profiling data."""
    _profile_data.clear()


def print_profile_report() -> None:
    """Print profiled functions, slowest total first."""
    summary = get_profile_summary()
    if not summary:
        console.print("[dim]No profiling data collected.[/dim]")
        return

    table = Table(title="⏱️  Profiling Report")
    table.add_column("Function", style="cyan")
    table.add_column("Calls", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Total (ms)", justify="right")
    table.add_column("Avg (ms)", justify="right")
    table.add_column("Max (ms)", justify="right")

    for func_name, stats in sorted(summary.items(), key=lambda x: x[1]["total_time"], reverse=True):
        table.add_row(
            func_name,
            str(stats["call_count"]),
            str(stats["failure_count"]),
            f"{stats['total_time'] * 1000:.2f}",
            f"{stats['avg_time'] * 1000:.3f}",
            f"{stats['max_time'] * 1000:.3f}",
        )
    console.print(table)


# =============================================================================
# BENCHMARK RUNNER
# =============================================================================

@dataclass
class BenchmarkResult:
    """Result of a benchmark run."""
    name: str
    iterations: int
    times: List[float]

    @property
    def mean(self) -> float:
        return statistics.mean(self.times) if self.times else 0

    @property
    def median(self) -> float:
        return statistics.median(self.times) if self.times else 0

    @property
    def std_dev(self) -> float:
        return statistics.stdev(self.times) if len(self.times) > 1 else 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "iterations": self.iterations,
            "successful": len(self.times),
            "mean": self.mean,
            "median": self.median,
            "std_dev": self.std_dev,
        }


class Benchmark:
    """
    Benchmark runner for performance testing.

    Each benchmark callable may be a plain function or a coroutine function.

    Usage:
        bench = Benchmark()
        bench.add("Enqueue", enqueue_burst, iterations=10)
        bench.run()
        bench.print_report()
    """

    def __init__(self):
        self.benchmarks: List[Dict] = []
        self.results: List[BenchmarkResult] = []

    def add(self, name: str, func: Callable, iterations: int = 5) -> "Benchmark":
        """Add a benchmark test."""
        self.benchmarks.append({"name": name, "func": func, "iterations": iterations})
        return self

    def run(self) -> List[BenchmarkResult]:
        """Run all benchmarks and return results."""
        self.results = []

        for bench in self.benchmarks:
            console.print(f"Running benchmark: {bench['name']}...")
            times = []
            for i in range(bench["iterations"]):
                start = time.perf_counter()
                try:
                    outcome = bench["func"]()
                    if inspect.isawaitable(outcome):
                        asyncio.run(outcome)
                except Exception as e:
                    console.print(f"  [red]Iteration {i + 1} failed: {e}[/red]")
                    continue
                times.append(time.perf_counter() - start)

            self.results.append(BenchmarkResult(
                name=bench["name"],
                iterations=bench["iterations"],
                times=times,
            ))

        return self.results

    def print_report(self) -> None:
        if not self.results:
            console.print("[dim]No benchmark results. Run benchmarks first.[/dim]")
            return

        table = Table(title="🏃 Benchmark Report")
        table.add_column("Benchmark", style="cyan")
        table.add_column("Runs", justify="right")
        table.add_column("Mean (ms)", justify="right")
        table.add_column("Median (ms)", justify="right")
        table.add_column("Std Dev (ms)", justify="right")
        table.add_column("Status")

        for result in self.results:
            if result.mean < 0.05:
                status = "✅ EXCELLENT"
            elif result.mean < 0.5:
                status = "✅ GOOD"
            else:
                status = "⚠️ SLOW"
            table.add_row(
                result.name,
                f"{len(result.times)}/{result.iterations}",
                f"{result.mean * 1000:.2f}",
                f"{result.median * 1000:.2f}",
                f"{result.std_dev * 1000:.2f}",
                status,
            )
        console.print(table)

    def get_results_dict(self) -> List[dict]:
        return [r.to_dict() for r in self.results]


# =============================================================================
# SYSTEM BENCHMARK (MAIN)
# =============================================================================

def run_system_benchmark(customers: int = 50) -> List[dict]:
    """
    Benchmark the engine against the demo salon.

    Args:
        customers: Walk-ins enqueued per iteration
    """
    from engine.coordinator import QueueCoordinator
    from models.checkin import CheckinType
    from models.queue_entry import EnqueueRequest

    service_mix = [["Haircut & Style"], ["Beard Trim"], ["Manicure"], ["Pedicure"], ["Hair Coloring"]]

    def fresh_coordinator() -> QueueCoordinator:
        coordinator = QueueCoordinator(verbose=False)
        coordinator.seed_demo()
        return coordinator

    async def enqueue_burst():
        coordinator = fresh_coordinator()
        for i in range(customers):
            await coordinator.queue.enqueue(EnqueueRequest(
                location_id="1",
                customer_name=f"Customer {i + 1}",
                services=service_mix[i % len(service_mix)],
            ))

    async def checkin_and_convert():
        coordinator = fresh_coordinator()
        for i in range(customers):
            checkin = await coordinator.checkins.add_checkin(
                "1", f"Guest {i + 1}", service_mix[i % len(service_mix)],
                checkin_type=CheckinType.REMOTE,
            )
            await coordinator.checkins.convert_to_queue(checkin.id)

    last_run = {}

    async def reconcile_loaded():
        coordinator = fresh_coordinator()
        for i in range(customers):
            await coordinator.queue.enqueue(EnqueueRequest(
                location_id="1",
                customer_name=f"Customer {i + 1}",
                services=service_mix[i % len(service_mix)],
            ))
        await coordinator.reconcile()
        last_run["coordinator"] = coordinator

    console.rule("[bold]QUEUE ORCHESTRATION ENGINE - BENCHMARK SUITE[/bold]")
    console.print(f"Started at: {datetime.now().isoformat()}")

    clear_profile_data()
    bench = Benchmark()
    bench.add(f"Enqueue {customers} walk-ins", enqueue_burst, iterations=5)
    bench.add(f"Check in and convert {customers}", checkin_and_convert, iterations=5)
    bench.add(f"Reconcile {customers} waiting", reconcile_loaded, iterations=5)
    bench.run()
    bench.print_report()
    print_profile_report()
    last_run["coordinator"].message_bus.print_summary()

    return bench.get_results_dict()


if __name__ == "__main__":
    run_system_benchmark()
