"""多租户记录级访问控制与共享计算服务。"""
