#!/usr/bin/env python3
"""
予報APIのレスポンスと変換結果を確認するデバッグスクリプト
"""

import asyncio
import json
import sys
import os

# プロジェクトのルートディレクトリをパスに追加
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from weather_client.models.location import Coordinate, ResolvedLocation
from weather_client.services.forecast_client import ForecastClient, WeatherAPIError
from weather_client.services.forecast_transformer import transform


async def debug_forecast_structure(latitude: float = 52.52, longitude: float = 13.41):
    """予報APIレスポンスの構造と変換結果をデバッグ"""
    print("=== 予報API レスポンス構造デバッグ ===\n")

    location = ResolvedLocation(Coordinate(latitude, longitude), name='Debug Location')

    async with ForecastClient() as client:
        try:
            payload = await client.fetch(location.coordinate)
        except WeatherAPIError as e:
            print(f"エラー: {e} (status={e.status_code})")
            return

        print(f"キー: {list(payload.keys())}")
        print(f"current: {json.dumps(payload.get('current'), ensure_ascii=False, indent=2)}")
        for block_name in ('hourly', 'daily'):
            block = payload.get(block_name) or {}
            print(f"{block_name}: {len(block.get('time', []))}件 フィールド={list(block.keys())}")

        snapshot = transform(payload, location)
        current = snapshot.current
        print("\n=== 変換結果 ===")
        print(f"現在: {current.icon} {current.description} {current.temperature}°C "
              f"(体感 {current.feels_like}°C, 風速 {current.wind_speed} km/h)")
        for hour in snapshot.hourly[:6]:
            print(f"  {hour.time:%H:%M} {hour.icon} {hour.temperature}°C 降水確率 {hour.precipitation_probability}%")
        for day in snapshot.daily:
            print(f"  {day.date} {day.icon} {day.description} {day.min_temp}〜{day.max_temp}°C")

        # 2回目はキャッシュから返る
        await client.fetch(location.coordinate)
        print(f"\nキャッシュ件数: {client.cache_size}")


if __name__ == "__main__":
    asyncio.run(debug_forecast_structure())
