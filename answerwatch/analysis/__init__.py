"""Answer analysis: brand matching, source extraction, page metadata,
combined structured analysis and visibility metrics.

Flow per execution:
  answer text + provider citations
    -> source_extractor.extract_candidates()
    -> page_metadata.fetch_many_metadata()
    -> engine.AnalysisEngine.analyze_combined()   (text-verified via brand_matcher)
    -> visibility.calculate_visibility() / calculate_share_of_voice()
"""
