"""
Truncation recovery: structured parsing, repair, truncation analysis and
emergency extraction
"""

from codestream.modules.recovery.repair import (
    is_json_balanced,
    repair_json,
    repair_code_fragment,
)
from codestream.modules.recovery.response_parser import ParsedResponse, parse_response
from codestream.modules.recovery.emergency_extractor import emergency_extract
from codestream.modules.recovery.truncation_analyzer import (
    TruncationAnalyzer,
    analyze_truncated_response,
)

__all__ = [
    'is_json_balanced',
    'repair_json',
    'repair_code_fragment',
    'ParsedResponse',
    'parse_response',
    'emergency_extract',
    'TruncationAnalyzer',
    'analyze_truncated_response',
]
