"""
Progression domain layer: enums, condition variants and immutable value types.

Import from the submodules directly (`studyquest.domain.models`,
`studyquest.domain.conditions`, `studyquest.domain.enums`).
"""
