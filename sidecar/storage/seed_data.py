"""Starter vocabulary written once into an empty workspace."""

from __future__ import annotations

# (code, description)
SEED_CIE10: list[tuple[str, str]] = [
    ("A09X", "Diarrea y gastroenteritis de presunto origen infeccioso"),
    ("E119", "Diabetes mellitus no insulinodependiente, sin mención de complicación"),
    ("I10X", "Hipertensión esencial (primaria)"),
    ("J00X", "Rinofaringitis aguda (resfriado común)"),
    ("J189", "Neumonía, no especificada"),
    ("K297", "Gastritis, no especificada"),
    ("M545", "Lumbago no especificado"),
    ("N390", "Infección de vías urinarias, sitio no especificado"),
    ("R509", "Fiebre, no especificada"),
    ("R51X", "Cefalea"),
]

# (code, description, category, soat_code)
SEED_CUPS: list[tuple[str, str, str, str | None]] = [
    ("890201", "Consulta de primera vez por medicina general", "Diagnostic", "39145"),
    ("890301", "Consulta de control o de seguimiento por medicina general", "Diagnostic", "39146"),
    ("902210", "Hemograma IV (hemoglobina, hematocrito, recuento de eritrocitos, índices eritrocitarios, leucograma, recuento de plaquetas)", "Diagnostic", "19103"),
    ("903841", "Glucosa en suero u otro fluido diferente a orina", "Diagnostic", "19602"),
    ("907106", "Uroanálisis", "Diagnostic", "19942"),
    ("871121", "Radiografía de tórax (PA o AP y lateral)", "Diagnostic", "21103"),
    ("939403", "Terapia respiratoria", "Therapeutic", None),
    ("861801", "Sutura de herida en piel y tejido celular subcutáneo", "Surgical", None),
]
