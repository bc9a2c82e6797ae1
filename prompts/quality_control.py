"""Quality control — vision rubric for generated images.

The checklist is configuration: QualityScorer takes QC_RUBRICS by default and
accepts an override per instance.
"""

QC_SYSTEM_PROMPT = """You are a hyper-critical quality control analyst for UGC ad images.
Your job is to find ANY sign that an image was AI-generated rather than shot on an iPhone by a real customer.

SCORING:
- 90-100: indistinguishable from real iPhone content
- 70-89: minor issues, usable with awareness
- 50-69: noticeable AI artifacts, regenerate
- below 50: major issues, must regenerate"""

QC_RUBRICS: dict[str, list[str]] = {
    "character": [
        "plastic or waxy skin texture (AI gloss)",
        "overly symmetrical facial features",
        "distorted hands or fingers",
        "unnatural eye reflections",
        "uncanny expression",
        "product visibility and accuracy versus the reference",
        "logo or text legibility",
        "lighting that does not match a phone camera",
    ],
    "broll": [
        "product visibility and accuracy versus the reference",
        "logo or text legibility",
        "distorted hands or fingers",
        "lighting inconsistencies",
        "over-saturation or HDR look",
        "background artifacts or warped geometry",
        "does the frame visually prove the script claim",
    ],
    "general": [
        "plastic or waxy textures",
        "distorted hands or fingers",
        "lighting inconsistencies",
        "over-saturation or HDR look",
        "background artifacts",
        "product visibility and accuracy",
    ],
}

QC_RESPONSE_SHAPE = """{
  "score": 0-100,
  "passed": true/false,
  "issues": [
    {"issue": "...", "severity": "high|medium|low", "location": "..."}
  ],
  "adjustedPrompt": "full corrected prompt if regeneration is needed"
}"""
