"""Gradesheet OCR.

Turns photographs of paper gradesheets into structured student-mark
records: OpenCV preprocessing, multi-strategy OCR through pluggable
providers, table structure recovery, result fusion, and rule-based
correction of Arabic names and marks.
"""
