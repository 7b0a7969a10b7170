from enum import Enum


class CashFlowCategory(str, Enum):
    """Cash flow report buckets. Investing flows surface only through the by-type breakdown."""

    OPERATING = "operating"
    FINANCING = "financing"
