"""PositiveNRG companion booking API."""
