from dataclasses import dataclass
from typing import Optional, Tuple

ANALYSIS_PERIOD = "January 2017 to December 2025"


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    icon: str
    color: str
    description: str
    kpis: Tuple[str, ...]
    suggestions: Tuple[str, ...] = (
        "Compare performance with the same period last year",
        "Forecast the trend for the next 3 months",
        "List the main risk factors and how to respond",
    )


CATEGORIES: Tuple[Category, ...] = (
    Category(
        id="revenue",
        name="Revenue Management (RevPAR)",
        icon="💰",
        color="#FFD700",
        description="Room revenue optimization and RevPAR strategy",
        kpis=("RevPAR", "ADR", "OCC", "TRevPAR"),
        suggestions=(
            "Forecast RevPAR for Q4 2025",
            "Analyze how ADR increases affected occupancy",
            "Compare weekend vs weekday profitability",
        ),
    ),
    Category(
        id="occupancy",
        name="Occupancy (OCC)",
        icon="🏨",
        color="#4A90E2",
        description="Room sales status and demand forecasting",
        kpis=("Occupancy Rate", "Rooms Sold", "Rooms Available"),
        suggestions=(
            "Why did occupancy drop compared with last month?",
            "Expected occupancy and booking pace for next month",
            "Compare OTA vs direct occupancy",
        ),
    ),
    Category(
        id="pricing",
        name="Pricing Strategy",
        icon="📊",
        color="#50C878",
        description="Dynamic pricing and revenue maximization",
        kpis=("ADR", "Price Elasticity", "Price vs Competitors"),
    ),
    Category(
        id="fnb",
        name="Food & Beverage (F&B)",
        icon="🍽️",
        color="#FF6B6B",
        description="Restaurant and breakfast revenue, food cost ratio management",
        kpis=("F&B Revenue", "Food Cost Ratio", "Average Check"),
    ),
    Category(
        id="cost",
        name="Operations & Cost Efficiency",
        icon="👛",
        color="#9B59B6",
        description="F&B cost ratio, labor productivity, utility unit cost, CPOR (cost per occupied room)",
        kpis=("CPOR", "Labor Productivity", "Energy Unit Cost"),
        suggestions=(
            "Analyze the recent trend in labor costs",
            "Suggest ways to reduce utility costs",
            "Analyze the fixed vs variable cost ratio",
        ),
    ),
    Category(
        id="channel",
        name="Sales Strategy",
        icon="🌐",
        color="#E67E22",
        description="Channel sales strategy built from historical data",
        kpis=("Channel Mix", "Strategy Success Rate", "Channel Profitability"),
    ),
    Category(
        id="forecast",
        name="Demand Forecast",
        icon="📈",
        color="#E67E22",
        description="Demand and revenue forecast for the next 3 months",
        kpis=("Forecast OCC", "Forecast Revenue", "Peak Season Index"),
    ),
    Category(
        id="customer",
        name="Price Sensitivity",
        icon="👥",
        color="#1ABC9C",
        description="Occupancy response and sensitivity to price increases",
        kpis=("Price Elasticity", "ADR Resistance Level", "Churn Rate"),
    ),
    Category(
        id="profit",
        name="Finance & P&L",
        icon="🥧",
        color="#3498DB",
        description="Monthly P&L, GOP margin, weekday and seasonal profit variance",
        kpis=("Operating Profit", "GOP Margin", "Profit Variance"),
    ),
    Category(
        id="strategy",
        name="Strategy Proposals",
        icon="💡",
        color="#F39C12",
        description="Data-driven proposals for new promotions",
        kpis=("Expected Impact", "ROI", "Execution Priority"),
    ),
)


def get_category(category_id: str) -> Optional[Category]:
    for category in CATEGORIES:
        if category.id == category_id:
            return category
    return None


def default_prompt(category: Category) -> str:
    """Prompt used for the automatic analysis run when a category is opened."""
    return (
        f"Using the full data from {ANALYSIS_PERIOD}, perform an in-depth analysis of '{category.name}'. "
        "Cover the main trend changes over the period, the KPI performance, "
        "and concrete strategies for future improvement."
    )
