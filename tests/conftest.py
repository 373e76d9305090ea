"""Pytest configuration and fixtures for sparsetrace tests."""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "tracer: tracer arithmetic and propagation")
    config.addinivalue_line("markers", "ops: traceable elementary functions")
    config.addinivalue_line("markers", "detection: Jacobian sparsity detection")
    config.addinivalue_line(
        "markers", "hessian: Hessian sparsity detection and computation"
    )
    config.addinivalue_line("markers", "coloring: graph coloring algorithm tests")
    config.addinivalue_line("markers", "jacobian: sparse Jacobian computation tests")
    config.addinivalue_line(
        "markers", "fallback: documents deliberate imprecision or unsoundness"
    )
