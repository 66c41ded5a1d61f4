"""Design-to-QA test-case generation.

Subpackages:
- integrations: Relay-based fetch layer and Figma design-asset importer
- generation: Phased Gemini generation, JSON recovery, normalization
- export: Spreadsheet export of final test cases
"""

__version__ = "0.1.0"
