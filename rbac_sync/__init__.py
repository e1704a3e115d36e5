"""
rbac_sync - 菜单 / API / 角色权限同步服务

关系库（菜单、API、权限字典、角色及关联）与 Casbin 策略引擎之间的同步与对账。
"""
