"""
Journal Insights - 日記エントリから AI インサイトを生成するバックエンド
"""
__version__ = "1.0.0"
