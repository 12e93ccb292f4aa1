"""
管理ダッシュボードの各ページ
"""
