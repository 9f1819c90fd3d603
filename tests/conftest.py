import sys
from pathlib import Path

import pytest

from synthbridge.core.configuration import BridgeConfig, PACKAGE_ROOT

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def fake_config(tmp_path):
    """Bridge configuration running the current interpreter against FakeProcessor."""
    def make(**overrides):
        kwargs = dict(
            interpreter=sys.executable,
            scratch_dir=tmp_path / "scratch",
            worker_paths=[str(FIXTURES), str(PACKAGE_ROOT)],
            processor="fake_processor:FakeProcessor",
            progress_interval=0.05,
            required_capabilities=["json", "csv"],
        )
        kwargs.update(overrides)
        return BridgeConfig(**kwargs)

    return make


@pytest.fixture
def csv_files(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    customers = data / "customers.csv"
    customers.write_text(
        "customer_id,name,age\n" + "".join(f"{i},name{i},{20 + i}\n" for i in range(10)),
        encoding="utf-8",
    )
    orders = data / "orders.csv"
    orders.write_text(
        "order_id,customer_id,amount\n" + "".join(f"{i},{i % 10},{i * 1.5}\n" for i in range(20)),
        encoding="utf-8",
    )
    return [
        {"path": str(customers), "table_name": "customers"},
        {"path": str(orders), "table_name": "orders"},
    ]
