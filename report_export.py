import html
import io
import re
from datetime import datetime, timezone

from pptx import Presentation
from pptx.util import Inches, Pt
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

REPORT_TITLE = "Hotel Insight Report"


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(name='H2', parent=styles['h2'], fontName='Helvetica-Bold', fontSize=16, leading=20,
                              spaceAfter=10))
    styles.add(ParagraphStyle(name='H3', parent=styles['h3'], fontName='Helvetica-BoldOblique', fontSize=12, leading=14,
                              spaceAfter=8))
    styles.add(ParagraphStyle(name='Body', parent=styles['Normal'], fontName='Helvetica', fontSize=11, leading=14,
                              spaceAfter=6))
    styles.add(ParagraphStyle(name='List', parent=styles['Body'], leftIndent=20, spaceAfter=4))
    return styles


def _inline(text):
    return re.sub(r'\*\*(.*?)\*\*', r'<b>\1</b>', html.escape(text, quote=False))


def parse_markdown_to_reportlab(text, styles):
    story = []
    for line in text.split('\n'):
        stripped_line = line.strip()
        if stripped_line.startswith('```') or stripped_line.startswith('|'):
            continue  # tables and code blocks don't survive the PDF layout
        if stripped_line.startswith('## ') or stripped_line.startswith('# '):
            story.append(Paragraph(_inline(stripped_line.lstrip('#').strip()), styles['H2']))
        elif stripped_line.startswith('### '):
            story.append(Paragraph(_inline(stripped_line[4:]), styles['H3']))
        elif stripped_line.startswith('- ') or stripped_line.startswith('* '):
            story.append(Paragraph(f'&bull; {_inline(stripped_line[2:])}', styles['List']))
        elif stripped_line:
            story.append(Paragraph(_inline(stripped_line), styles['Body']))
        else:
            story.append(Spacer(1, 10))
    return story


def _bullets(items, styles):
    return [Paragraph(f'&bull; {_inline(item)}', styles['List']) for item in items]


def create_pdf_report(report, category, turns=()):
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter, leftMargin=0.75 * inch, rightMargin=0.75 * inch,
                            topMargin=0.75 * inch, bottomMargin=0.75 * inch)
    styles = _styles()
    title_style = ParagraphStyle(name='Title', parent=styles['h1'], fontSize=24, alignment=1, spaceAfter=20)
    story = [Paragraph(REPORT_TITLE, title_style),
             Paragraph(_inline(category.name), styles['H3']),
             Spacer(1, 0.2 * inch)]

    story.append(Paragraph("Summary", styles['H2']))
    story.extend(parse_markdown_to_reportlab(report.summary, styles))

    story.append(Paragraph("Key Metrics", styles['H2']))
    rows = [["KPI", "Value", "Trend", "Basis"]]
    rows += [[kpi.label, kpi.value, f"{kpi.trend:+.1f}%", kpi.trend_label] for kpi in report.kpis]
    table = Table(rows, hAlign='LEFT')
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#1A2332')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
    ]))
    story.extend([table, Spacer(1, 0.2 * inch)])

    story.append(Paragraph("Insights", styles['H2']))
    story.extend(_bullets(report.insights, styles))
    story.append(Paragraph("Action Plan", styles['H2']))
    story.append(Paragraph("Short term", styles['H3']))
    story.extend(_bullets(report.actions.short_term, styles))
    story.append(Paragraph("Mid term", styles['H3']))
    story.extend(_bullets(report.actions.mid_term, styles))

    if turns:
        story.append(PageBreak())
        story.append(Paragraph("Follow-up Questions", styles['H2']))
        for turn in turns:
            story.append(Paragraph(f"<b>Q:</b> {_inline(turn.question)}", styles['Body']))
            story.extend(parse_markdown_to_reportlab(turn.answer, styles))
    doc.build(story)
    buffer.seek(0)
    return buffer


def create_ppt_report(report, category, turns=()):
    prs = Presentation()
    prs.slide_width, prs.slide_height = Inches(16), Inches(9)
    # Title Slide
    slide = prs.slides.add_slide(prs.slide_layouts[0])
    slide.shapes.title.text = f"{REPORT_TITLE}: {category.name}"
    slide.placeholders[1].text = f"Generated on: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M %Z')}"

    def add_content_slide(title, lines):
        slide = prs.slides.add_slide(prs.slide_layouts[1])
        slide.shapes.title.text = title
        tf = slide.shapes.placeholders[1].text_frame
        tf.clear()
        tf.word_wrap = True
        for i, line in enumerate(lines):
            p = tf.paragraphs[0] if i == 0 else tf.add_paragraph()
            p.text = re.sub(r'\*\*(.*?)\*\*', r'\1', line)
            p.font.size = Pt(14)

    summary_lines = [line for line in re.sub(r'\|.*\|', '', report.summary).split('\n') if line.strip()]
    add_content_slide("Summary", summary_lines or [report.summary])
    add_content_slide("Key Metrics", [f"{kpi.label}: {kpi.value} ({kpi.trend:+.1f}% {kpi.trend_label})"
                                      for kpi in report.kpis])
    add_content_slide("Insights", report.insights)
    add_content_slide("Action Plan", [f"Short term: {a}" for a in report.actions.short_term] +
                      [f"Mid term: {a}" for a in report.actions.mid_term])
    for turn in turns:
        add_content_slide(f"Q: {turn.question}"[:80], [line for line in turn.answer.split('\n') if line.strip()])

    buffer = io.BytesIO()
    prs.save(buffer)
    buffer.seek(0)
    return buffer
