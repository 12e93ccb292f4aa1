"""
SirCharge 管理ダッシュボード

Firestoreに保存されたアプリデータを集計・編集するための管理用API（FastAPI）と
Streamlitダッシュボードを提供するパッケージ
"""

__version__ = "1.0.0"
