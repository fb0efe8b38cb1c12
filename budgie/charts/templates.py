from __future__ import annotations

import tempfile
from typing import Any

import numpy as np
import plotly.graph_objects as go
import plotly.io as pio

from budgie.currency import currency_symbol
from budgie.services.report_service import CategoryTotal, PeriodMetrics, WeekdayStats

THEME: dict[str, Any] = {
    "colors": {
        "palette": [
            "#4C72B0",
            "#55A868",
            "#C44E52",
            "#8172B3",
            "#CCB974",
            "#64B5CD",
            "#E5AE38",
            "#6D904F",
            "#8B8B8B",
            "#D65F5F",
        ],
        "primary": "#4C72B0",
        "secondary": "#55A868",
        "subscriptions": "#8172B3",
        "trend_line": "#C44E52",
        "grid": "#E5E5E5",
        "background": "#FAFAFA",
        "text": "#2D3436",
    },
    "font": {
        "family": "Inter, sans-serif",
        "size": 13,
        "title_size": 16,
    },
    "size": {
        "width": 800,
        "height": 500,
        "scale": 2,
    },
    "margin": {"l": 60, "r": 30, "t": 60, "b": 50},
}

PIE_CATEGORY_THRESHOLD = 6

_custom_template = pio.templates["plotly_white"]
_custom_template.layout.font = dict(
    family=THEME["font"]["family"],
    size=THEME["font"]["size"],
    color=THEME["colors"]["text"],
)
_custom_template.layout.title = dict(
    font=dict(size=THEME["font"]["title_size"], color=THEME["colors"]["text"]),
    x=0.5,
    xanchor="center",
)
_custom_template.layout.plot_bgcolor = THEME["colors"]["background"]
_custom_template.layout.xaxis = dict(gridcolor=THEME["colors"]["grid"])
_custom_template.layout.yaxis = dict(gridcolor=THEME["colors"]["grid"])
pio.templates["budgie"] = _custom_template
pio.templates.default = "budgie"


def _fmt_amount(value: float, cur: str) -> str:
    sym = currency_symbol(cur)
    if sym in {"€", "$", "¥"}:
        if value >= 1000:
            return f"{sym}{value:,.0f}"
        return f"{sym}{value:.0f}" if value == int(value) else f"{sym}{value:.2f}"
    if value >= 1000:
        return f"{value:,.0f} {sym}"
    return f"{value:.0f} {sym}" if value == int(value) else f"{value:.2f} {sym}"


def _base_layout() -> dict[str, Any]:
    return {
        "margin": THEME["margin"],
        "width": THEME["size"]["width"],
        "height": THEME["size"]["height"],
    }


def _save(fig: go.Figure) -> str:
    tmp = tempfile.NamedTemporaryFile(suffix=".png", delete=False)  # noqa: SIM115
    tmp.close()
    fig.write_image(tmp.name, scale=THEME["size"]["scale"])
    return tmp.name


def error_bar_extents(stats: list[WeekdayStats]) -> tuple[list[float], list[float]]:
    """Distance from each weekday average down to its minimum and up to its maximum."""
    averages = np.array([s.average for s in stats], dtype=float)
    minimums = np.array([s.minimum for s in stats], dtype=float)
    maximums = np.array([s.maximum for s in stats], dtype=float)
    below = np.clip(averages - minimums, 0, None)
    above = np.clip(maximums - averages, 0, None)
    return below.tolist(), above.tolist()


async def spending_by_category_chart(data: list[CategoryTotal], cur: str = "USD") -> str | None:
    if not data:
        return None

    categories = [row.category_name for row in data]
    totals: list[float] = [row.total_amount for row in data]
    palette = THEME["colors"]["palette"]
    colors = [palette[i % len(palette)] for i in range(len(categories))]

    if len(categories) <= PIE_CATEGORY_THRESHOLD:
        fig = go.Figure(
            go.Pie(
                labels=categories,
                values=totals,
                marker=dict(colors=colors),
                textinfo="label+percent",
                texttemplate="%{label}<br>%{percent:.0%}",
                hovertemplate="%{label}: %{value:,.2f} " + cur + "<extra></extra>",
                hole=0.35,
                sort=False,
            )
        )
        fig.update_layout(
            **_base_layout(),
            title="Spending by Category",
            showlegend=False,
        )
        fig.add_annotation(
            text=_fmt_amount(sum(totals), cur),
            x=0.5,
            y=0.5,
            showarrow=False,
            font=dict(size=18, color=THEME["colors"]["text"]),
        )
    else:
        fig = go.Figure(
            go.Bar(
                x=totals,
                y=categories,
                orientation="h",
                marker_color=colors,
                text=[_fmt_amount(v, cur) for v in totals],
                textposition="outside",
                hovertemplate="%{y}: %{x:,.2f} " + cur + "<extra></extra>",
            )
        )
        fig.update_layout(
            **_base_layout(),
            title="Spending by Category",
            xaxis_title=cur,
        )
        fig.update_yaxes(autorange="reversed")

    return _save(fig)


async def daily_spending_chart(metrics: PeriodMetrics, budget: float | None = None) -> str | None:
    if not metrics.daily_totals or metrics.total_overall_spending <= 0:
        return None

    cur = metrics.display_currency
    sym = currency_symbol(cur)
    days = [d.raw_date for d in metrics.daily_totals]
    totals: list[float] = [d.amount for d in metrics.daily_totals]

    fig = go.Figure()
    fig.add_trace(
        go.Scatter(
            x=days,
            y=totals,
            mode="lines+markers" if len(days) <= 31 else "lines",
            line=dict(color=THEME["colors"]["secondary"], width=2),
            marker=dict(size=4),
            customdata=[d.label for d in metrics.daily_totals],
            hovertemplate="%{customdata}: %{y:,.2f} " + cur + "<extra></extra>",
            name="Daily total",
        )
    )

    average = metrics.daily_average
    fig.add_hline(
        y=average,
        line_dash="dash",
        line_color=THEME["colors"]["primary"],
        annotation_text=f"Avg: {_fmt_amount(average, cur)}",
        annotation_position="top left",
    )

    # Cumulative spending overlay
    cumulative = np.cumsum(totals)
    fig.add_trace(
        go.Scatter(
            x=days,
            y=cumulative.tolist(),
            mode="lines",
            line=dict(color=THEME["colors"]["primary"], width=1, dash="dot"),
            name="Cumulative",
            yaxis="y2",
            hovertemplate="%{x}: %{y:,.2f} " + cur + "<extra></extra>",
        )
    )

    layout_kwargs: dict[str, Any] = {
        **_base_layout(),
        "title": "Daily Spending",
        "yaxis_title": cur,
        "yaxis_tickprefix": sym if len(sym) <= 1 else "",
        "yaxis2": dict(
            title="Cumulative",
            overlaying="y",
            side="right",
            showgrid=False,
            tickprefix=sym if len(sym) <= 1 else "",
        ),
        "showlegend": True,
        "legend": dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
    }

    if budget is not None and budget > 0:
        # Budget caps the running total, so it sits on the cumulative axis.
        fig.add_hline(
            y=budget,
            line_dash="dot",
            line_color=THEME["colors"]["trend_line"],
            annotation_text=f"Budget: {_fmt_amount(budget, cur)}",
            annotation_position="top right",
            yref="y2",
        )

    fig.update_layout(**layout_kwargs)

    return _save(fig)


async def weekday_spending_chart(stats: list[WeekdayStats], cur: str = "USD") -> str | None:
    if not stats or all(s.average == 0 and s.maximum == 0 for s in stats):
        return None

    below, above = error_bar_extents(stats)
    fig = go.Figure(
        go.Bar(
            x=[s.name for s in stats],
            y=[s.average for s in stats],
            marker_color=THEME["colors"]["primary"],
            error_y=dict(type="data", symmetric=False, array=above, arrayminus=below, color=THEME["colors"]["text"]),
            customdata=[[s.minimum, s.maximum, s.occurrences] for s in stats],
            hovertemplate=(
                "%{x}: avg %{y:,.2f} "
                + cur
                + "<br>min %{customdata[0]:,.2f} / max %{customdata[1]:,.2f}"
                + "<br>%{customdata[2]} days<extra></extra>"
            ),
            name="Average",
        )
    )
    fig.update_layout(
        **_base_layout(),
        title="Average Spending by Weekday",
        yaxis_title=cur,
        showlegend=False,
    )
    return _save(fig)
