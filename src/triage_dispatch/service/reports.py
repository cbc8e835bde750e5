from __future__ import annotations

import io

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from triage_dispatch.models import Case

from .db import now_iso


def build_case_report(case: Case) -> bytes:
    """Render a single-case summary: triage, assignment and the full timeline."""
    buff = io.BytesIO()
    pdf = canvas.Canvas(buff, pagesize=letter)
    width, height = letter

    y = height - 40
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawString(40, y, f"Emergency Case {case.case_id}")
    y -= 18
    pdf.setFont("Helvetica", 10)
    pdf.drawString(40, y, f"Generated: {now_iso()}")
    y -= 24

    triage = case.triage
    pdf.setStrokeColor(colors.darkblue)
    pdf.rect(35, y - 75, width - 70, 70, stroke=1, fill=0)
    pdf.setFont("Helvetica-Bold", 10)
    pdf.drawString(45, y - 15, f"{triage.severity.upper()} | {triage.category} | priority {triage.priority} | {case.status}")
    pdf.setFont("Helvetica", 9)
    pdf.drawString(45, y - 30, f"Requester: {case.requester_id}  |  Confidence: {triage.confidence}%  |  Source: {triage.source}")
    pdf.drawString(45, y - 43, f"Location: {case.location.latitude}, {case.location.longitude}")
    symptoms = ", ".join(symptom.keyword for symptom in triage.detected_symptoms) or "none detected"
    pdf.drawString(45, y - 56, f"Symptoms: {symptoms}"[:110])
    y -= 90

    assignment = case.assignment
    if assignment is not None:
        pdf.rect(35, y - 75, width - 70, 70, stroke=1, fill=0)
        pdf.setFont("Helvetica-Bold", 10)
        label = f"Unit {assignment.unit_id} ({assignment.unit_class})"
        if assignment.degraded:
            label += " - degraded dispatch"
        pdf.drawString(45, y - 15, label)
        pdf.setFont("Helvetica", 9)
        pdf.drawString(45, y - 30, f"Crew: {', '.join(assignment.crew.describe())}")
        pdf.drawString(45, y - 43, f"Distance: {assignment.distance_km} km  |  ETA: {assignment.eta_minutes} min")
        facility = assignment.facility.name if assignment.facility else "N/A"
        pdf.drawString(45, y - 56, f"Destination: {facility}")
        y -= 90

    pdf.setFont("Helvetica-Bold", 11)
    pdf.drawString(40, y, "Timeline")
    y -= 16
    pdf.setFont("Helvetica", 9)
    for entry in case.timeline:
        if y < 60:
            pdf.showPage()
            pdf.setFont("Helvetica", 9)
            y = height - 40
        line = f"{entry.at.isoformat()}  {entry.status}"
        if entry.note:
            line += f"  ({entry.note})"
        pdf.drawString(45, y, line[:120])
        y -= 13

    pdf.save()
    buff.seek(0)
    return buff.read()
