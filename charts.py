import plotly.express as px
import plotly.graph_objects as go

from models import AnalysisReport

COLOR_PALETTE = px.colors.qualitative.G10
PRIMARY_COLOR = "#4A90E2"
SECONDARY_COLOR = "#FFD700"


def chart_frame(report: AnalysisReport):
    names = [point.name for point in report.chart_data]
    values = [point.value for point in report.chart_data]
    has_value2 = any(point.value2 is not None for point in report.chart_data)
    values2 = [point.value2 for point in report.chart_data] if has_value2 else None
    return names, values, values2


# --- Plotting Functions ---
def build_chart(report: AnalysisReport, title: str = "") -> go.Figure:
    names, values, values2 = chart_frame(report)
    chart_type = report.chart_type

    if chart_type == "pie":
        fig = px.pie(names=names, values=values, title=title, color_discrete_sequence=COLOR_PALETTE)
    elif chart_type == "composed":
        fig = go.Figure()
        fig.add_trace(go.Bar(x=names, y=values, name="value", marker_color=PRIMARY_COLOR))
        if values2 is not None:
            fig.add_trace(go.Scatter(x=names, y=values2, name="value2", mode="lines+markers",
                                     line=dict(color=SECONDARY_COLOR)))
    else:
        fig = go.Figure()
        series = [("value", values, PRIMARY_COLOR)]
        if values2 is not None:
            series.append(("value2", values2, SECONDARY_COLOR))
        for name, ys, color in series:
            if chart_type == "bar":
                fig.add_trace(go.Bar(x=names, y=ys, name=name, marker_color=color))
            elif chart_type == "area":
                fig.add_trace(go.Scatter(x=names, y=ys, name=name, mode="lines", fill="tozeroy",
                                         line=dict(color=color)))
            else:
                fig.add_trace(go.Scatter(x=names, y=ys, name=name, mode="lines+markers",
                                         line=dict(color=color)))

    fig.update_layout(title=title, title_x=0.5, font=dict(family="Arial, sans-serif"))
    return fig
