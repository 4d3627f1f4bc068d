"""Service layer for credit rating: templates, customer assessments, customers."""
