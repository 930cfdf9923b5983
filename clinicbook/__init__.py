"""ClinicBook - availability and reservation engine for multi-tenant clinics"""
