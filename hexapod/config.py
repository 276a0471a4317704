from typing import Literal

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Настройки веб-сервера"""
    host: str = Field("0.0.0.0", description="Адрес для привязки сервера")
    port: int = Field(8000, ge=1, le=65535, description="Порт сервера")
    reload: bool = Field(False, description="Auto-reload при изменении кода (для разработки)")
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        "info", description="Уровень логирования для uvicorn и логгеров hexapod"
    )


class RobotConfig(BaseModel):
    """Настройки связи с гексаподом"""
    host: str = Field("192.168.4.1", description="Адрес робота (точка доступа STEMI)")
    stream_port: int = Field(80, ge=1, le=65535, description="TCP порт для потоковой передачи пакетов")
    http_port: int = Field(80, ge=1, le=65535, description="HTTP порт для разовой отправки пакетов")

    # Таймауты
    connect_timeout_s: float = Field(5.0, gt=0.0, le=60.0, description="Таймаут TCP подключения")
    http_timeout_s: float = Field(2.0, gt=0.0, le=30.0, description="Таймаут HTTP запроса /send")

    # Watchdog робота ждёт пакет не реже 10 Гц
    stream_interval_s: float = Field(0.1, gt=0.0, le=1.0, description="Период повторной отправки текущего пакета")


class MotionConfig(BaseModel):
    """Калибровка движений"""
    max_speed_s_per_m: float = Field(13.0, gt=0.0, description="Секунд на 1 м при максимальной мощности")
    rotation_time_s: float = Field(13.0, gt=0.0, description="Секунд на полный разворот 360°")
    guard_band_s: float = Field(0.1, ge=0.0, le=1.0, description="Запас к длительности команды (рассинхрон часов)")


class Config(BaseModel):
    """Главная конфигурация приложения"""
    server: ServerConfig = ServerConfig()
    robot: RobotConfig = RobotConfig()
    motion: MotionConfig = MotionConfig()


# Глобальный экземпляр конфигурации
config = Config()
